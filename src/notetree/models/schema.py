"""Data models for the notetree store.

Domain models (Page, Note, Property), the views handed to callers
(NoteView, PageView), batch operation payloads and per-operation results.
"""

import datetime
import os
import re
import threading
import time
import uuid
from datetime import timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

# Canonical textual UUID. Anything else used as a note id is a client temp id.
UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def looks_like_uuid(value: Any) -> bool:
    """Return True if value is a canonical UUID string."""
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite does not keep tzinfo, so every datetime read back from the
    database comes out naive and is UTC by construction.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Monotonic state for UUIDv7 generation
_id_lock = threading.Lock()
_last_ms = 0
_counter = 0

_COUNTER_MAX = 0xFFF
_RAND_B_MASK = (1 << 62) - 1
_TIMESTAMP_MASK = (1 << 48) - 1


def generate_id() -> str:
    """Generate a time-ordered UUIDv7 string.

    Layout (RFC 9562):
        - 48 bits: Unix timestamp in milliseconds
        - 4 bits: version (0111)
        - 12 bits: rand_a, used here as a per-millisecond counter
        - 2 bits: variant (10)
        - 62 bits: random

    The counter is seeded randomly on each new millisecond and incremented
    for IDs generated within the same millisecond, so IDs from one process
    sort in creation order. When the counter overflows, the timestamp is
    advanced by one millisecond.
    """
    global _last_ms, _counter

    with _id_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            # Leave headroom so a burst within one millisecond rarely overflows
            _counter = int.from_bytes(os.urandom(2), "big") & 0x3FF
        else:
            _counter += 1
            if _counter > _COUNTER_MAX:
                _last_ms += 1
                _counter = 0

        rand_b = int.from_bytes(os.urandom(8), "big") & _RAND_B_MASK
        value = (
            (_last_ms & _TIMESTAMP_MASK) << 80
            | 0x7 << 76
            | _counter << 64
            | 0b10 << 62
            | rand_b
        )
        return str(uuid.UUID(int=value))


class OwnerKind(str, Enum):
    """Kinds of entity that can own properties."""

    NOTE = "note"
    PAGE = "page"


class OperationType(str, Enum):
    """Batch operation types."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Page(BaseModel):
    """A top-level container owning zero or more notes."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the page")
    name: str = Field(..., description="Unique page name")
    content: Optional[str] = Field(default=None, description="Page content")
    active: bool = Field(default=True)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the page name is not blank."""
        if not v.strip():
            raise ValueError("Page name cannot be empty")
        return v.strip()


class Note(BaseModel):
    """A content unit belonging to a page, optionally nested under a parent."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    page_id: str = Field(..., description="Owning page")
    parent_note_id: Optional[str] = Field(
        default=None, description="Parent note; the parent graph may contain cycles"
    )
    content: str = Field(default="", description="Content of the note")
    order_index: int = Field(default=0, description="Sibling ordering")
    collapsed: bool = Field(default=False)
    active: bool = Field(default=True, description="Soft-delete flag")
    internal: bool = Field(
        default=False, description="UI visibility hint set by an internal::true property"
    )
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)


class Property(BaseModel):
    """A named value attached to exactly one note or page."""

    id: Optional[int] = Field(default=None, description="Row id, assigned by the store")
    note_id: Optional[str] = None
    page_id: Optional[str] = None
    name: str
    value: str = ""
    weight: float = Field(default=2, description="Visibility and duplicate-handling class")
    active: bool = True
    created_at: datetime.datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _exactly_one_owner(self) -> "Property":
        """A property belongs to a note or to a page, never both or neither."""
        if (self.note_id is None) == (self.page_id is None):
            raise ValueError("Property must have exactly one of note_id or page_id")
        return self

    @property
    def owner_kind(self) -> OwnerKind:
        return OwnerKind.NOTE if self.note_id is not None else OwnerKind.PAGE

    @property
    def owner_id(self) -> str:
        return self.note_id if self.note_id is not None else self.page_id


class PropertyValue(BaseModel):
    """One value of an entity's own property, as shown to callers."""

    value: str
    internal: bool = False


# Inherited properties: name -> [{"value": v}, ...]
InheritedProperties = Dict[str, List[Dict[str, str]]]


class NoteView(Note):
    """A note with its own properties and, on request, inherited ones."""

    properties: Dict[str, List[PropertyValue]] = Field(default_factory=dict)
    parent_properties: Optional[InheritedProperties] = None

    def to_dict(self) -> Dict[str, Any]:
        """Full row shape, nulls included; parent_properties only when resolved."""
        exclude = {"parent_properties"} if self.parent_properties is None else None
        return self.model_dump(mode="json", exclude=exclude)


class PageView(Page):
    """A page with its properties."""

    properties: Dict[str, List[PropertyValue]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Batch payloads
# ---------------------------------------------------------------------------


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Optional id or name where an empty string means "not given"
OptionalRef = Annotated[Optional[str], BeforeValidator(_blank_to_none)]

# order_index is stored in a SQLite INTEGER column (signed 64-bit)
OrderIndex = Annotated[Optional[int], Field(ge=-(2 ** 63), le=2 ** 63 - 1)]


class CreateNotePayload(BaseModel):
    """Payload of a create operation."""

    id: OptionalRef = Field(default=None, description="Client-chosen real id (UUID)")
    page_id: OptionalRef = None
    page_name: OptionalRef = Field(
        default=None, description="Find or create the page by name instead of page_id"
    )
    content: str = ""
    parent_note_id: OptionalRef = Field(
        default=None, description="Real note id or a client_temp_id from this batch"
    )
    order_index: OrderIndex = None
    collapsed: bool = False
    client_temp_id: OptionalRef = Field(
        default=None, description="Opaque token for intra-batch references, never persisted"
    )

    model_config = {"extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Optional[str]) -> Optional[str]:
        """A client-supplied note id must be a canonical UUID."""
        if v is not None and not looks_like_uuid(v):
            raise ValueError("Note id must be a UUID")
        return v

    @model_validator(mode="after")
    def _page_reference_required(self) -> "CreateNotePayload":
        if self.page_id is None and self.page_name is None:
            raise ValueError("Missing page_id or page_name for create operation")
        return self


class UpdateNotePayload(BaseModel):
    """Payload of an update operation. Fields not present are left unchanged."""

    id: str
    content: Optional[str] = None
    parent_note_id: OptionalRef = None
    order_index: OrderIndex = None
    collapsed: Optional[bool] = None
    active: Optional[bool] = None
    page_id: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("id cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def _no_explicit_nulls(self) -> "UpdateNotePayload":
        # parent_note_id may be explicitly null (move to top level); the
        # other fields have no meaningful null value.
        for name in ("content", "order_index", "collapsed", "active", "page_id"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the caller actually supplied, minus the id."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id"
        }


class DeleteNotePayload(BaseModel):
    """Payload of a delete operation."""

    id: str

    model_config = {"extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("id cannot be empty")
        return v.strip()


# ---------------------------------------------------------------------------
# Results and requests
# ---------------------------------------------------------------------------


class OperationResult(BaseModel):
    """Outcome of one batch operation, at the same position as its input."""

    type: str
    status: Literal["success", "error"]
    note: Optional[NoteView] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_code: Optional[str] = None
    id: Optional[str] = None
    client_temp_id: Optional[str] = None
    deleted_note_id: Optional[str] = None

    @classmethod
    def success(cls, op_type: str, **kwargs: Any) -> "OperationResult":
        return cls(type=op_type, status="success", **kwargs)

    @classmethod
    def failure(cls, op_type: str, error: Any, **kwargs: Any) -> "OperationResult":
        """Build an error result from a NoteTreeError."""
        return cls(
            type=op_type,
            status="error",
            error=error.message,
            error_type=error.error_type,
            error_code=error.code.name,
            **kwargs,
        )

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the caller-facing envelope, omitting absent fields."""
        data = self.model_dump(
            mode="json",
            exclude={name for name in type(self).model_fields if getattr(self, name) is None},
        )
        if self.note is not None:
            data["note"] = self.note.to_dict()
        return data


class BatchRequest(BaseModel):
    """Caller-facing batch request envelope.

    Operations stay loosely typed here: each one is validated on its own so
    that one malformed operation fails alone instead of failing the request.
    """

    operations: List[Any]
    include_parent_properties: bool = False
    include_internal: bool = False


class AppendToPageResult(BaseModel):
    """Outcome of appending notes to a page by name."""

    page: Optional[PageView] = None
    created: bool = False
    appended_notes: List[OperationResult] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page.model_dump(mode="json") if self.page is not None else None,
            "created": self.created,
            "appended_notes": [r.to_dict() for r in self.appended_notes],
        }
