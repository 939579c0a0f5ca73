"""
Idempotent Upsert Writer

Writes metric rows with INSERT ... ON CONFLICT (natural key) DO UPDATE so a
re-run of the same range overwrites metrics instead of duplicating rows.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from metricsync.exceptions import WriteBatchError
from metricsync.models.base import SessionLocal
from metricsync.utils.logger import log

DEFAULT_BATCH_SIZE = 1000


@dataclass
class UpsertResult:
    """Counts for one upsert call"""
    rows_received: int = 0
    rows_written: int = 0
    duplicates_collapsed: int = 0
    batches: int = 0
    batches_failed: int = 0
    errors: List[WriteBatchError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.batches_failed == 0


class IdempotentUpsertWriter:
    """Batch upserts into one table keyed on its natural unique constraint"""

    def __init__(
        self,
        model,
        key_columns: Sequence[str],
        metric_columns: Sequence[str],
        session_factory: Callable[[], Session] = SessionLocal,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.model = model
        self.table = model.__table__
        self.key_columns = tuple(key_columns)
        self.metric_columns = tuple(metric_columns)
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.clock = clock

    def _key(self, row: Dict) -> Tuple:
        return tuple(row[column] for column in self.key_columns)

    def _collapse(self, rows: Iterable[Dict]) -> List[Dict]:
        """Rows sharing a key collapse to the last one seen"""
        by_key: Dict[Tuple, Dict] = {}
        for row in rows:
            by_key[self._key(row)] = row
        return list(by_key.values())

    def _statement(self, db: Session, values: List[Dict]):
        dialect = db.get_bind().dialect.name
        if dialect == 'postgresql':
            insert_stmt = pg_insert(self.table).values(values)
        elif dialect == 'sqlite':
            insert_stmt = sqlite_insert(self.table).values(values)
        else:
            raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")

        excluded = insert_stmt.excluded
        set_map = {column: excluded[column] for column in self.metric_columns}
        set_map['updated_at'] = self.clock()
        return insert_stmt.on_conflict_do_update(
            index_elements=list(self.key_columns),
            set_=set_map,
        )

    def upsert(self, rows: Iterable[Dict], stop_on_error: bool = False) -> UpsertResult:
        """
        Upsert rows in batches, one transaction per batch.

        A failed batch is rolled back and recorded as a WriteBatchError; later
        batches still run unless stop_on_error is set, in which case the error
        is raised.
        """
        rows = list(rows)
        result = UpsertResult(rows_received=len(rows))
        unique_rows = self._collapse(rows)
        result.duplicates_collapsed = len(rows) - len(unique_rows)

        now = self.clock()
        for start in range(0, len(unique_rows), self.batch_size):
            batch_index = start // self.batch_size
            batch = [
                {**row, 'created_at': now, 'updated_at': now}
                for row in unique_rows[start:start + self.batch_size]
            ]
            result.batches += 1

            db = self.session_factory()
            try:
                db.execute(self._statement(db, batch))
                db.commit()
                result.rows_written += len(batch)
            except Exception as e:
                db.rollback()
                error = WriteBatchError(
                    f"Batch {batch_index} into {self.table.name} failed: {e}",
                    batch_index=batch_index,
                    first_key=self._key(batch[0]),
                    last_key=self._key(batch[-1]),
                )
                result.batches_failed += 1
                result.errors.append(error)
                log.error(
                    f"[UpsertWriter] {self.table.name} batch {batch_index} "
                    f"({len(batch)} rows, keys {error.first_key} .. {error.last_key}) rolled back: {e}"
                )
                if stop_on_error:
                    raise error from e
            finally:
                db.close()

        if result.duplicates_collapsed:
            log.debug(f"[UpsertWriter] {self.table.name}: collapsed {result.duplicates_collapsed} duplicate keys")
        return result
