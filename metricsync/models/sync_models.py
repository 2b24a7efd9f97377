"""MetricSync — Sync Request / Response Schemas.

One endpoint accepts two request shapes: a read-only discovery request that
lists a spreadsheet's tabs, and a sync request that replaces a scope's
metrics. parse_sync_request() picks the shape explicitly.
"""

from enum import Enum
from typing import Any, ClassVar, List, NamedTuple, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from metricsync.core.errors import ValidationError
from metricsync.core.parsing import extract_spreadsheet_id


class SyncMode(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"


class SyncScope(NamedTuple):
    """The (owner, client, source, sheet) tuple one sync run replaces."""

    owner_id: str
    client_id: str
    source_id: str
    sheet_name: str

    def label(self) -> str:
        return "/".join(self)


# ─────────────────────────────────────────────
# REQUESTS
# ─────────────────────────────────────────────


class _RequestBase(BaseModel):
    owner_id: str = Field(
        default="", validation_alias=AliasChoices("owner_id", "user_id")
    )
    client_id: str = ""
    source_id: str = Field(
        default="", validation_alias=AliasChoices("source_id", "google_sheet_id")
    )

    @field_validator("owner_id", "client_id", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("source_id", mode="before")
    @classmethod
    def _normalize_source(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return extract_spreadsheet_id(value)
        return value

    required_fields: ClassVar[Tuple[str, ...]] = ("owner_id", "source_id")

    def missing_fields(self) -> List[str]:
        return [name for name in self.required_fields if not getattr(self, name)]


class DiscoveryRequest(_RequestBase):
    """List the tabs of a spreadsheet. Never touches the metric store."""

    discover_sheets_only: bool = True


class SyncRequest(_RequestBase):
    """Fully replace the metrics of one scope from one tab."""

    sheet_name: str = ""
    tab_name: Optional[str] = None
    tab_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("tab_ref", "tab_gid")
    )
    range: Optional[str] = None
    mode: Optional[SyncMode] = Field(
        default=None, validation_alias=AliasChoices("mode", "sync_type")
    )

    required_fields: ClassVar[Tuple[str, ...]] = (
        "owner_id",
        "source_id",
        "sheet_name",
        "mode",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def _legacy_mode(cls, value: Any) -> Any:
        if value == "undeniable":
            return SyncMode.ADMIN
        return value or None

    @field_validator("sheet_name", mode="before")
    @classmethod
    def _sheet_none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def scope(self) -> SyncScope:
        return SyncScope(self.owner_id, self.client_id, self.source_id, self.sheet_name)


AnySyncRequest = Union[DiscoveryRequest, SyncRequest]


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts)


def parse_sync_request(payload: Any) -> AnySyncRequest:
    """Validate a raw request body into one of the two request shapes.

    Raises ValidationError naming every missing required field.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    model = DiscoveryRequest if payload.get("discover_sheets_only") else SyncRequest
    try:
        request = model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid request: {_describe(e)}") from e

    missing = request.missing_fields()
    if missing:
        raise ValidationError(f"Missing required parameters: {', '.join(missing)}")
    return request


# ─────────────────────────────────────────────
# RESPONSES
# ─────────────────────────────────────────────


class SheetTab(BaseModel):
    """A tab inside a spreadsheet."""

    name: str
    ref: str


class SyncReport(BaseModel):
    """Row-level accounting for one transform pass."""

    rows_seen: int = 0
    rows_kept: int = 0
    rows_skipped: int = 0  # every non-date cell was zero or empty
    rows_failed: int = 0
    cells_failed: int = 0
    sample_errors: List[str] = []

    def record_error(self, message: str, limit: int) -> None:
        if len(self.sample_errors) < limit:
            self.sample_errors.append(message)


class SyncResponse(BaseModel):
    success: bool = True
    message: str
    metrics_processed: int = Field(default=0, serialization_alias="metricsProcessed")
    report: Optional[SyncReport] = None


class DiscoveryResponse(BaseModel):
    success: bool = True
    message: str = ""
    sheets: List[SheetTab] = []


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
