"""
Integration status and disconnect endpoints
"""
from fastapi import APIRouter, HTTPException, Query, Request

from metricsync.api.sync import parse_provider
from metricsync.models.credential import Provider
from metricsync.services.bindings import BindingResolver
from metricsync.services.credential_store import CredentialStore
from metricsync.services.sync_history import last_run

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/status")
def integration_status(request: Request, tenant_id: int = Query(..., description="Tenant id")):
    """Connection, binding and last run per provider"""
    session_factory = request.app.state.sync_service.session_factory
    statuses = CredentialStore(session_factory).status(tenant_id)
    resolver = BindingResolver(session_factory)

    for provider in Provider:
        binding = resolver.get(tenant_id, provider)
        statuses[provider.short_name]["binding"] = binding.identifier if binding else None
        statuses[provider.short_name]["last_run"] = last_run(tenant_id, provider, session_factory=session_factory)

    return {"tenant_id": tenant_id, "integrations": statuses}


@router.delete("/{provider}/disconnect")
def disconnect(request: Request, provider: str, tenant_id: int = Query(..., description="Tenant id")):
    """Remove the stored credential; synced data and the binding are kept"""
    provider = parse_provider(provider)
    session_factory = request.app.state.sync_service.session_factory
    if not CredentialStore(session_factory).delete(tenant_id, provider):
        raise HTTPException(status_code=404, detail=f"No {provider.short_name} credential for tenant {tenant_id}")
    return {"tenant_id": tenant_id, "provider": provider.value, "disconnected": True}
