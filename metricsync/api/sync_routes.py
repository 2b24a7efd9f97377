"""MetricSync — Sync API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlmodel import Session

from metricsync.config import settings
from metricsync.connectors.platform.client import (
    Identity,
    PermissionServiceError,
    PlatformClient,
)
from metricsync.core.errors import AuthorizationError, SyncError, ValidationError
from metricsync.core.logging import get_logger
from metricsync.database import get_session
from metricsync.models.sync_models import SyncScope
from metricsync.storage.metric_store import MetricStore
from metricsync.storage.sync_status import SyncStatusTracker
from metricsync.sync.pipeline import SyncOrchestrator, bearer_token

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])


# ── Dependencies ──


async def get_platform_client():
    """Dependency — yields a platform client, closed after the request."""
    client = PlatformClient()
    try:
        yield client
    finally:
        await client.close()


def get_orchestrator(
    session: Session = Depends(get_session),
    platform: PlatformClient = Depends(get_platform_client),
) -> SyncOrchestrator:
    return SyncOrchestrator(session, platform=platform)


async def require_scope_access(
    owner_id: str = Query(..., min_length=1),
    client_id: str = Query(""),
    source_id: str = Query(..., min_length=1),
    sheet_name: str = Query(..., min_length=1),
    authorization: Optional[str] = Header(None),
    platform: PlatformClient = Depends(get_platform_client),
) -> SyncScope:
    """Authenticate the caller for a scoped read.

    Owners read their own scopes; anyone else needs the sync capability.
    """
    identity: Identity = await platform.get_user(bearer_token(authorization))
    if identity.id != owner_id:
        try:
            allowed = await platform.has_permission(identity, settings.sync_capability)
        except PermissionServiceError as e:
            logger.warning(f"Permission check failed for scoped read: {e}")
            allowed = False
        if not allowed:
            raise AuthorizationError("Insufficient permissions to read this scope")
    return SyncScope(owner_id, client_id, source_id, sheet_name)


# ── Endpoints ──


@router.post("/sync")
async def sync_metrics(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Discover a spreadsheet's tabs, or fully replace one scope's metrics.

    Body is either a sync request (`owner_id`, `client_id`, `source_id`,
    `sheet_name`, `mode`) or a discovery request (`owner_id`, `source_id`,
    `discover_sheets_only: true`).
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e

    try:
        result = await orchestrator.run(payload, authorization)
    except SyncError:
        raise
    except Exception as e:
        logger.exception(f"Unexpected sync failure: {e}")
        raise SyncError(f"Internal server error: {e}", 500) from e

    return result.model_dump(by_alias=True, exclude_none=True)


@router.get("/sync/status")
async def get_sync_status(
    scope: SyncScope = Depends(require_scope_access),
    session: Session = Depends(get_session),
):
    """Outcome of the most recent sync run for a scope."""
    status = SyncStatusTracker(session).get(scope)
    if status is None:
        raise SyncError("Scope has never been synced", 404)

    return {
        "success": True,
        "status": status.status,
        "last_sync_at": status.last_sync_at.isoformat() if status.last_sync_at else None,
        "last_successful_sync_at": (
            status.last_successful_sync_at.isoformat()
            if status.last_successful_sync_at
            else None
        ),
        "last_error": status.last_error,
        "metrics_processed": status.metrics_processed,
        "rows_skipped": status.rows_skipped,
        "rows_failed": status.rows_failed,
        "total_sync_count": status.total_sync_count,
        "successful_sync_count": status.successful_sync_count,
    }


@router.get("/metrics")
async def list_metrics(
    scope: SyncScope = Depends(require_scope_access),
    session: Session = Depends(get_session),
):
    """Observations currently stored for a scope."""
    rows = MetricStore(session).list_scope(scope)
    return {
        "success": True,
        "count": len(rows),
        "metrics": [
            {
                "metric_name": r.metric_name,
                "category": r.category,
                "metric_kind": r.metric_kind,
                "value": r.value,
                "observed_on": r.observed_on,
                "tab_name": r.tab_name,
                "tab_ref": r.tab_ref,
            }
            for r in rows
        ],
    }
