"""MetricSync — Sync Orchestrator.

Runs one inbound sync request through:
  validate → authenticate → authorize → (discover tabs)
                                      | (clean → fetch → transform → persist)

Validation, authentication and authorization failures happen before any
store access. A scope is fully replaced on every run: its observations are
deleted, then the freshly computed set is bulk upserted. Runs for the same
scope are serialized within this process.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from sqlmodel import Session

from metricsync.config import settings
from metricsync.connectors.platform.client import (
    Identity,
    PermissionServiceError,
    PlatformClient,
)
from metricsync.connectors.sheets.client import SheetsClient
from metricsync.connectors.sheets.credentials import ServiceAccountTokenProvider
from metricsync.connectors.sheets.transformer import transform_rows
from metricsync.core.errors import (
    AuthError,
    AuthorizationError,
    NoValidMetricsError,
    PersistenceError,
    SourceUnavailableError,
    SyncError,
    TabsNotFoundError,
)
from metricsync.core.logging import get_logger
from metricsync.models.sync_models import (
    DiscoveryRequest,
    DiscoveryResponse,
    SyncRequest,
    SyncResponse,
    SyncScope,
    parse_sync_request,
)
from metricsync.storage.metric_store import MetricStore
from metricsync.storage.sync_status import SyncStatusTracker

logger = get_logger("sync.pipeline")


class SyncState(str, Enum):
    VALIDATING = "validating"
    AUTHENTICATING = "authenticating"
    AUTHORIZING = "authorizing"
    DISCOVERING = "discovering"
    CLEANING = "cleaning"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ScopeLocks:
    """One asyncio.Lock per scope, kept only while some run holds or awaits it."""

    def __init__(self):
        self._locks: Dict[SyncScope, asyncio.Lock] = {}
        self._users: Dict[SyncScope, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def for_scope(self, scope: SyncScope) -> asyncio.Lock:
        return self._locks.setdefault(scope, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, scope: SyncScope):
        """Serialize runs for a scope; the lock is dropped after the last one."""
        lock = self.for_scope(scope)
        self._users[scope] = self._users.get(scope, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[scope] -= 1
            if not self._users[scope]:
                del self._users[scope]
                self._locks.pop(scope, None)


SCOPE_LOCKS = ScopeLocks()


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an "Authorization: Bearer ..." header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing or invalid Authorization header")
    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise AuthError("Missing or invalid Authorization header")
    return token


class SyncOrchestrator:
    """Coordinates one sync or discovery request end to end."""

    def __init__(
        self,
        session: Session,
        platform: PlatformClient | None = None,
        token_provider_factory: Callable[[], Any] | None = None,
        sheets_client_factory: Callable[[str], SheetsClient] | None = None,
        locks: ScopeLocks | None = None,
        date_order: str | None = None,
    ):
        self.session = session
        self.platform = platform or PlatformClient()
        self.token_provider_factory = token_provider_factory or (
            lambda: ServiceAccountTokenProvider.from_settings(session)
        )
        self.sheets_client_factory = sheets_client_factory or SheetsClient
        self.locks = locks or SCOPE_LOCKS
        self.date_order = date_order or settings.date_order
        self.store = MetricStore(session)
        self.status = SyncStatusTracker(session)
        self.state = SyncState.VALIDATING

    def _enter(self, state: SyncState, scope: str = "") -> None:
        self.state = state
        logger.debug(f"→ {state.value}", extra={"state": state.value, "scope": scope})

    async def close(self) -> None:
        await self.platform.close()

    # ── Entry Point ──

    async def run(
        self, payload: Any, authorization: Optional[str]
    ) -> Union[SyncResponse, DiscoveryResponse]:
        """Execute one request. Raises SyncError subclasses on failure."""
        started = time.monotonic()
        try:
            self._enter(SyncState.VALIDATING)
            request = parse_sync_request(payload)

            self._enter(SyncState.AUTHENTICATING)
            identity = await self.platform.get_user(bearer_token(authorization))
            logger.info(f"Authenticated caller {identity.id}")

            self._enter(SyncState.AUTHORIZING)
            await self._authorize(identity)

            if isinstance(request, DiscoveryRequest):
                result = await self._discover(request)
            else:
                async with self.locks.hold(request.scope):
                    result = await self._replace_scope(request)

            self._enter(SyncState.DONE)
            logger.info(
                result.message,
                extra={
                    "state": SyncState.DONE.value,
                    "duration_ms": round((time.monotonic() - started) * 1000),
                },
            )
            return result
        except SyncError as e:
            failed_in = self.state
            self._enter(SyncState.FAILED)
            logger.error(
                f"Sync failed during {failed_in.value}: {e.message}",
                extra={"state": failed_in.value, "status_code": e.status_code},
            )
            raise
        except Exception as e:
            failed_in = self.state
            self._enter(SyncState.FAILED)
            logger.exception(
                f"Sync failed unexpectedly during {failed_in.value}: {e}",
                extra={"state": failed_in.value, "status_code": 500},
            )
            raise

    # ── Authorization ──

    async def _authorize(self, identity: Identity) -> None:
        capability = settings.sync_capability
        try:
            allowed = await self.platform.has_permission(identity, capability)
        except PermissionServiceError as e:
            # A broken permission service is not a denial.
            logger.warning(f"Could not check permissions, continuing with sync: {e}")
            return
        if not allowed:
            raise AuthorizationError("Insufficient permissions to sync data")

    # ── Sheets Access ──

    async def _open_sheets(self) -> SheetsClient:
        provider = self.token_provider_factory()
        access_token = await provider.get_access_token()
        return self.sheets_client_factory(access_token)

    # ── Discovery ──

    async def _discover(self, request: DiscoveryRequest) -> DiscoveryResponse:
        self._enter(SyncState.DISCOVERING, request.source_id)
        sheets = await self._open_sheets()
        async with sheets:
            try:
                tabs = await sheets.list_tabs(request.source_id)
            except TabsNotFoundError:
                raise
            except SourceUnavailableError as e:
                raise SourceUnavailableError(
                    f"Failed to discover sheets: {e.message}",
                    upstream_status=e.upstream_status,
                ) from e

        return DiscoveryResponse(
            success=True, message=f"Found {len(tabs)} sheets", sheets=tabs
        )

    # ── Full-Replace Sync ──

    def _clean(self, scope: SyncScope) -> None:
        label = scope.label()
        try:
            deleted = self.store.delete_scope(scope)
        except PersistenceError as e:
            logger.warning(f"Could not clean up existing metrics: {e}", extra={"scope": label})
            return
        logger.info(f"Cleaned up {deleted} existing metrics", extra={"scope": label})

    async def _replace_scope(self, request: SyncRequest) -> SyncResponse:
        scope = request.scope
        label = scope.label()
        self.status.mark_started(scope)

        try:
            sheets = await self._open_sheets()
            async with sheets:
                self._enter(SyncState.CLEANING, label)
                self._clean(scope)

                self._enter(SyncState.FETCHING, label)
                rows = await sheets.fetch_rows(
                    request.source_id, request.sheet_name, request.range
                )
            if not rows:
                raise SourceUnavailableError("No data found in sheet")

            self._enter(SyncState.TRANSFORMING, label)
            observations, report = transform_rows(
                rows, request, date_order=self.date_order
            )

            self._enter(SyncState.PERSISTING, label)
            if not observations:
                raise NoValidMetricsError("No valid metrics found in sheet data")
            count = self.store.bulk_upsert(observations)
        except SyncError as e:
            self.status.mark_failed(scope, e.message)
            raise
        except Exception as e:
            self.status.mark_failed(scope, f"Internal server error: {e}")
            raise

        self.status.mark_succeeded(scope, count, report)
        return SyncResponse(
            success=True,
            message=f"Successfully synced {count} metrics",
            metrics_processed=count,
            report=report,
        )
