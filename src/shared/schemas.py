"""
Shared Schemas - Pydantic Models for Validation and Serialization
Common data models used across the components of Offline Edge.

These schemas provide:
- Push payload validation
- Command channel message validation
- Queued mutation read/write models
- Status snapshots for the control plane
"""
import base64
from datetime import datetime
from typing import Optional, List, Dict, Any, Union, Literal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class RequestClass(str, Enum):
    """Resource classes recognised by the interception gateway."""
    STATIC = "static"
    API = "api"
    NAVIGATION = "navigation"


class LifecycleState(str, Enum):
    """Lifecycle states of one installed version."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class CommandType(str, Enum):
    """Command channel message types."""
    FORCE_ACTIVATE = "FORCE_ACTIVATE"
    WARM_URLS = "WARM_URLS"


# Legacy message names, still accepted
COMMAND_ALIASES = {
    "SKIP_WAITING": CommandType.FORCE_ACTIVATE,
    "CACHE_URLS": CommandType.WARM_URLS,
}


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=False,
        validate_assignment=True,
    )


# Notification schemas
class NotificationAction(BaseSchema):
    """A button shown on a notification."""
    action: str = Field(..., min_length=1)
    title: str
    icon: Optional[str] = None


class NotificationPayload(BaseSchema):
    """Inbound push payload; every field is optional."""
    title: Optional[str] = None
    body: Optional[str] = None
    icon: Optional[str] = None
    actions: Optional[List[NotificationAction]] = None
    metadata: Optional[Dict[str, Any]] = None


class RenderedNotification(BaseSchema):
    """A notification after merging the payload over the localized defaults."""
    title: str
    body: str
    icon: str
    badge: Optional[str] = None
    vibrate: List[int] = Field(default_factory=list)
    require_interaction: bool = True
    actions: List[NotificationAction] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)
    tag: Optional[str] = None


class NotificationClick(BaseSchema):
    """A user interaction with a shown notification."""
    action: Optional[str] = None
    tag: Optional[str] = None


# Command channel schemas
class CommandMessage(BaseSchema):
    """A message sent by the host application over the command channel."""
    type: CommandType
    paths: List[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def resolve_alias(cls, v):
        if isinstance(v, str) and v in COMMAND_ALIASES:
            return COMMAND_ALIASES[v]
        return v

    @classmethod
    def from_raw(cls, message: Dict[str, Any]) -> "CommandMessage":
        """Parse a raw message; WARM_URLS paths may arrive as `paths` or `payload`."""
        data = dict(message)
        if "paths" not in data and isinstance(data.get("payload"), list):
            data["paths"] = data.pop("payload")
        elif isinstance(data.get("payload"), dict) and "paths" in data["payload"]:
            data["paths"] = data.pop("payload")["paths"]
        data.pop("payload", None)
        return cls.model_validate(data)


# Mutation queue schemas
class QueuedMutationCreate(BaseSchema):
    """A side-effecting request the host could not deliver."""
    url: str = Field(..., min_length=1)
    method: str = Field("POST")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[bytes, str, Dict[str, Any], List[Any]]] = None

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v):
        return v.upper()


class QueuedMutation(BaseSchema):
    """A persisted queue record."""
    id: int
    url: str
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None
    enqueued_at: datetime

    @field_serializer("body", when_used="json-unless-none")
    def serialize_body(self, body: bytes) -> str:
        return base64.b64encode(body).decode("ascii")


# Status schemas
class ReplayReport(BaseSchema):
    """Outcome of one drain."""
    tag: Optional[str] = None
    attempted: int = 0
    replayed_ids: List[int] = Field(default_factory=list)
    failed_ids: List[int] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None


class CommandResult(BaseSchema):
    """Outcome of a command channel message."""
    type: CommandType
    accepted: bool
    detail: Optional[str] = None


class RuntimeStatus(BaseSchema):
    """Snapshot of the offline layer for diagnostics."""
    version: str
    lifecycle_state: LifecycleState
    waiting: bool
    generations: List[str]
    queued_mutations: Optional[int] = None
    queue_healthy: bool
    replay_stats: Dict[str, Any] = Field(default_factory=dict)
    refresh_stats: Dict[str, Any] = Field(default_factory=dict)
    gateway_stats: Dict[str, Any] = Field(default_factory=dict)
    cache_stats: Dict[str, Any] = Field(default_factory=dict)
    cache_entries: Dict[str, int] = Field(default_factory=dict)
    timestamp: datetime


class SyncTrigger(BaseSchema):
    """Result of a sync or periodic sync trigger."""
    tag: str
    handled: bool
    detail: Optional[Dict[str, Any]] = None


class PushResult(BaseSchema):
    """Result of rendering a push payload."""
    notification: RenderedNotification
    kind: Literal["push"] = "push"
