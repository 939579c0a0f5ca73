"""
Split an inclusive date range into provider-sized chunks.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Union


@dataclass(frozen=True)
class DateChunk:
    """Inclusive [start, end] sub-range"""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self):
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def chunk_date_range(start: date, end: date, chunk_days: int) -> List[DateChunk]:
    """
    Cover [start, end] with consecutive chunks of at most chunk_days days.

    Chunks are ordered, gap-free and non-overlapping; the last one is clipped
    to end.

    Raises:
        ValueError: start after end, or chunk_days below 1
    """
    start, end = _as_date(start), _as_date(end)
    if chunk_days < 1:
        raise ValueError(f"chunk_days must be >= 1, got {chunk_days}")
    if start > end:
        raise ValueError(f"start {start} is after end {end}")

    chunks = []
    current = start
    step = timedelta(days=chunk_days - 1)
    while current <= end:
        chunk_end = min(current + step, end)
        chunks.append(DateChunk(current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks
