from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime, timezone
from typing import Any


TASK_STATUSES = ("icebox", "backlog", "ongoing", "waiting-review", "done")
DEFAULT_TASK_STATUS = "icebox"
TASK_PRIORITIES = ("low", "medium", "high", "critical")

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_DECLINED = "declined"
INVITATION_STATUSES = (INVITATION_PENDING, INVITATION_ACCEPTED, INVITATION_DECLINED)

ATTACHMENT_PULL_REQUEST = "pull_request"
ATTACHMENT_COMMIT = "commit"
ATTACHMENT_ISSUE = "issue"
ATTACHMENT_TYPES = (ATTACHMENT_PULL_REQUEST, ATTACHMENT_COMMIT, ATTACHMENT_ISSUE)

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 10000


class BoardError(Exception):
    """Base error for entity repository failures."""

    code = "BOARD_ERROR"


class ValidationError(BoardError):
    code = "VALIDATION_ERROR"


class NotFoundError(BoardError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class ForbiddenError(BoardError):
    code = "FORBIDDEN"


class ConflictError(BoardError):
    code = "CONFLICT"


def format_ts(dt: datetime) -> str:
    # Fixed-format UTC timestamp for lexicographic ordering.
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_ts(value: str) -> datetime:
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("timestamp is empty")
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def clean_name(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    s = value.strip()
    if not s:
        raise ValidationError(f"{label} is required")
    if len(s) > MAX_NAME_LENGTH:
        raise ValidationError(f"{label} must be at most {MAX_NAME_LENGTH} characters")
    return s


def clean_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("description must be a string")
    if len(value) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return value


def check_status(value: Any) -> str:
    s = str(value or "").strip().lower()
    if s not in TASK_STATUSES:
        raise ValidationError(f"invalid status: {value} (expected one of {', '.join(TASK_STATUSES)})")
    return s


def check_priority(value: Any) -> str:
    s = str(value or "").strip().lower()
    if s not in TASK_PRIORITIES:
        raise ValidationError(f"invalid priority: {value} (expected one of {', '.join(TASK_PRIORITIES)})")
    return s


def check_deadline(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("deadline must be an ISO-8601 timestamp string")
    try:
        return format_ts(parse_ts(value))
    except ValueError as e:
        raise ValidationError(f"invalid deadline: {value}") from e


def unique_ids(values: Any, label: str) -> list[str]:
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{label} must be a list of user ids")
    out: list[str] = []
    for v in values:
        s = str(v or "").strip()
        if not s:
            raise ValidationError(f"{label} must not contain empty ids")
        if s not in out:
            out.append(s)
    return out


def _reject_unknown(payload: dict[str, Any], allowed: tuple[str, ...], kind: str) -> None:
    if not isinstance(payload, dict):
        raise ValidationError(f"{kind} update must be a JSON object")
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        raise ValidationError(f"unsupported {kind} fields: {', '.join(unknown)}")


@dataclass(frozen=True)
class BoardUpdate:
    name: str | None = None
    description: str | None = None

    ALLOWED = ("name", "description")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BoardUpdate":
        _reject_unknown(payload, cls.ALLOWED, "board")
        return cls(name=payload.get("name"), description=payload.get("description"))

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.name is not None:
            out["name"] = clean_name(self.name, "name")
        if self.description is not None:
            out["description"] = clean_description(self.description)
        return out


@dataclass(frozen=True)
class CardUpdate:
    name: str | None = None
    description: str | None = None

    ALLOWED = ("name", "description")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CardUpdate":
        _reject_unknown(payload, cls.ALLOWED, "card")
        return cls(name=payload.get("name"), description=payload.get("description"))

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.name is not None:
            out["name"] = clean_name(self.name, "name")
        if self.description is not None:
            out["description"] = clean_description(self.description)
        return out


@dataclass(frozen=True)
class TaskUpdate:
    """Partial task update.

    Fields left as None are not touched. ``clear`` names optional fields
    (``priority``, ``deadline``) to remove from the task.
    """

    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    deadline: str | None = None
    assigned_to: tuple[str, ...] | None = None
    clear: frozenset[str] = field(default_factory=frozenset)

    ALLOWED = ("title", "description", "status", "priority", "deadline", "assignedTo")
    CLEARABLE = ("priority", "deadline")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TaskUpdate":
        _reject_unknown(payload, cls.ALLOWED, "task")
        clear = frozenset(k for k in cls.CLEARABLE if k in payload and payload[k] is None)
        assigned = payload.get("assignedTo")
        return cls(
            title=payload.get("title"),
            description=payload.get("description"),
            status=payload.get("status"),
            priority=payload.get("priority"),
            deadline=payload.get("deadline"),
            assigned_to=tuple(unique_ids(assigned, "assignedTo")) if assigned is not None else None,
            clear=clear,
        )

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.title is not None:
            out["title"] = clean_name(self.title, "title")
        if self.description is not None:
            out["description"] = clean_description(self.description)
        if self.status is not None:
            out["status"] = check_status(self.status)
        if self.priority is not None:
            out["priority"] = check_priority(self.priority)
        if self.deadline is not None:
            out["deadline"] = check_deadline(self.deadline)
        if self.assigned_to is not None:
            out["assignedTo"] = unique_ids(self.assigned_to, "assignedTo")
        return out

    def removals(self) -> tuple[str, ...]:
        unknown = sorted(set(self.clear) - set(self.CLEARABLE))
        if unknown:
            raise ValidationError(f"cannot clear task fields: {', '.join(unknown)}")
        return tuple(sorted(self.clear))


@dataclass(frozen=True)
class UserUpdate:
    display_name: str | None = None
    photo_url: str | None = None

    ALLOWED = ("displayName", "photoURL")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserUpdate":
        # email is immutable.
        _reject_unknown(payload, cls.ALLOWED, "user")
        return cls(display_name=payload.get("displayName"), photo_url=payload.get("photoURL"))

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.display_name is not None:
            out["displayName"] = clean_name(self.display_name, "displayName")
        if self.photo_url is not None:
            if not isinstance(self.photo_url, str):
                raise ValidationError("photoURL must be a string")
            out["photoURL"] = self.photo_url.strip()
        return out
