#!/usr/bin/env python3
"""
Binding Discovery Script

Lists the Search Console sites or GA4 properties a tenant's connected account
can read, shows which one would be chosen, and optionally stores it.

Usage:
    python scripts/discover_bindings.py --tenant 1 --provider gsc [--save]
"""
import asyncio
import sys
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from metricsync.config import get_settings
from metricsync.connectors import GoogleOAuthClient, build_reporting_client
from metricsync.models.base import init_db
from metricsync.services.bindings import BindingResolver
from metricsync.services.credential_store import CredentialStore
from metricsync.services.token_manager import TokenLifecycleManager


async def discover(tenant_id: int, provider: str, save: bool = False) -> int:
    settings = get_settings()
    settings.require_oauth_client()
    init_db()

    credential = CredentialStore().get(tenant_id, provider)
    if credential is None:
        print(f"ERROR: tenant {tenant_id} has no {provider} credential")
        return 1

    token_manager = TokenLifecycleManager(GoogleOAuthClient.from_settings(settings))
    access_token = await token_manager.get_valid_token(credential)
    client = build_reporting_client(provider, access_token, settings)

    resolver = BindingResolver()
    candidates = await resolver.discover(provider, client)
    chosen = resolver.choose(provider, candidates)
    stored = resolver.get(tenant_id, provider)

    print(f"\n{len(candidates)} candidates for tenant {tenant_id} ({provider}):")
    for candidate in candidates:
        marker = "*" if chosen and candidate.identifier == chosen.identifier else " "
        detail = candidate.permission_level or candidate.name or ""
        print(f"  {marker} {candidate.identifier}  {detail}")

    if stored:
        print(f"\nStored binding: {stored.identifier} (kept as-is)")
    elif chosen and save:
        resolver.store(tenant_id, provider, chosen)
        print(f"\nStored binding: {chosen.identifier}")
    elif chosen:
        print(f"\nWould store: {chosen.identifier} (run with --save)")
    else:
        print("\nNo usable binding found")
        return 1
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Discover a tenant's Search Console site or GA4 property")
    parser.add_argument("--tenant", type=int, required=True, help="Tenant id")
    parser.add_argument("--provider", required=True, choices=["gsc", "ga4"])
    parser.add_argument("--save", action="store_true", help="Store the chosen binding if none exists")
    args = parser.parse_args()

    sys.exit(asyncio.run(discover(args.tenant, args.provider, save=args.save)))
