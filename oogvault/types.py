"""
Data types for the conversation vault.
"""

import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


DEFAULT_TITLE = "Untitled conversation"

# Message authors
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = frozenset({ROLE_USER, ROLE_ASSISTANT})


def utc_now() -> str:
    """Current UTC timestamp in ISO format.

    Microsecond precision keeps saves made in quick succession
    ordered by updated_at.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    """Generate a record id for messages, tags and nuggets."""
    return uuid.uuid4().hex


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as 'Z' suffixes and naive
    timestamps (assumed UTC).
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def local_datetime(utc_iso: str) -> str:
    """Convert a UTC ISO timestamp to a local 'YYYY-MM-DD HH:MM' string.

    Returns the input unchanged if it cannot be parsed.
    """
    if not utc_iso:
        return ""
    try:
        return parse_utc_timestamp(utc_iso).astimezone().strftime("%Y-%m-%d %H:%M")
    except (ValueError, OverflowError):
        return utc_iso


def local_date(utc_iso: str) -> str:
    """Convert a UTC ISO timestamp to a local-timezone date string (YYYY-MM-DD)."""
    if not utc_iso:
        return ""
    try:
        return parse_utc_timestamp(utc_iso).astimezone().strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        return utc_iso[:10] if len(utc_iso) >= 10 else utc_iso


MAX_ID_LENGTH = 1024

# Conversation ids come from page URLs, so most printable characters are fine.
# Blocked: control chars and DEL.
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f]')


def validate_id(id: str) -> None:
    """Validate a conversation ID: length and no control characters."""
    if not isinstance(id, str) or not id or len(id) > MAX_ID_LENGTH:
        raise ValueError(f"ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise ValueError(f"ID contains invalid characters: {id!r}")


def normalize_tag(tag: str) -> str:
    """Tags are stored and compared trimmed and lower-cased."""
    normalized = tag.strip().lower()
    if not normalized:
        raise ValueError("Tag must not be empty")
    return normalized


def validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown message role {role!r} (expected 'user' or 'assistant')")
    return role


@dataclass
class Message:
    """One turn of a conversation."""
    role: str
    content: str
    id: str = ""
    conversation_id: str = ""
    timestamp: str = ""
    position: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Message":
        if not isinstance(d, dict):
            raise ValueError(f"Message must be an object, got {type(d).__name__}")
        return cls(
            role=validate_role(d.get("role", "")),
            content=d.get("content") or "",
            id=d.get("id") or "",
            conversation_id=d.get("conversation_id") or "",
            timestamp=d.get("timestamp") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        del d["position"]
        return d


@dataclass
class Conversation:
    """
    A captured chat session.

    ``messages`` is populated by get_conversation() and search results;
    listings leave it empty.
    """
    id: str
    platform: str = ""
    title: str = DEFAULT_TITLE
    created_at: str = ""
    updated_at: str = ""
    is_auto_saved: bool = True
    url: str = ""
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Conversation":
        """Build a Conversation from an ingestion payload.

        Raises:
            ValueError: malformed payload, invalid id or unknown message role
        """
        if not isinstance(d, dict):
            raise ValueError("Conversation payload must be an object")
        conv_id = d.get("id")
        validate_id(conv_id)
        messages = d.get("messages") or []
        if not isinstance(messages, list):
            raise ValueError("Conversation messages must be a list")
        is_auto_saved = d.get("is_auto_saved")
        return cls(
            id=conv_id,
            platform=d.get("platform") or "",
            title=d.get("title") or DEFAULT_TITLE,
            created_at=d.get("created_at") or "",
            updated_at=d.get("updated_at") or "",
            is_auto_saved=True if is_auto_saved is None else bool(is_auto_saved),
            url=d.get("url") or "",
            messages=[Message.from_dict(m) for m in messages],
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["messages"] = [m.to_dict() for m in self.messages]
        return d


@dataclass
class Nugget:
    """
    A condensed question/answer pair derived from one user→assistant exchange.

    ``score`` is present only in search results.
    """
    question: str
    answer: str
    id: str = ""
    conversation_id: str = ""
    platform: str = ""
    created_at: str = ""
    score: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.score is None:
            del d["score"]
        return d


@dataclass(frozen=True)
class StoreStats:
    conversations: int
    messages: int
    nuggets: int


@dataclass
class ConversationMatch:
    """A conversation search hit with the snippet that matched best."""
    conversation: Conversation
    score: float
    matched_content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.conversation.to_dict(),
            "score": self.score,
            "matched_content": self.matched_content,
        }


@dataclass
class SimilarQuestion:
    """A previously asked question resembling the text being typed."""
    question: str
    answer: Optional[str]
    conversation_id: str
    conversation_title: str
    platform: str
    timestamp: str
    score: float
    source: str  # "conversation" or "nugget"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
