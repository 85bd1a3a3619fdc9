"""Data models shared across the archiver."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

UNKNOWN_SPEAKER = "Unknown"


def parse_zoom_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by Zoom (``2024-01-15T10:00:00Z``).

    Naive values are assumed to be UTC. Returns None for empty or invalid input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass
class Credential:
    """Bearer token plus the epoch second after which it must not be used."""

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class DateWindow:
    """Inclusive time range used to query the API."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Window start {self.start.isoformat()} is after end {self.end.isoformat()}")

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def span(self) -> timedelta:
        return self.end - self.start

    def __str__(self) -> str:
        return f"{self.start.date().isoformat()} to {self.end.date().isoformat()}"


@dataclass
class MeetingRef:
    """Identity and basic metadata of a meeting.

    ``uuid`` is the idempotency key. ``meeting_id`` is kept for display and audit
    only; Zoom reuses it across occurrences of a recurring meeting.
    """

    uuid: str
    meeting_id: str
    topic: str
    start_time: Optional[datetime]
    duration_seconds: int
    host: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "MeetingRef":
        """Build a reference from a report-meeting or cloud-recording item.

        Both listings report ``duration`` in minutes.
        """
        uuid = item.get("uuid")
        if not uuid:
            raise ValueError("Meeting item has no uuid")

        duration = item.get("duration") or 0
        try:
            duration_seconds = int(duration) * 60
        except (TypeError, ValueError):
            duration_seconds = 0

        return cls(
            uuid=str(uuid),
            meeting_id=str(item.get("id", "")),
            topic=item.get("topic") or "Untitled Meeting",
            start_time=parse_zoom_datetime(item.get("start_time")),
            duration_seconds=duration_seconds,
            host=item.get("user_email") or item.get("host_email") or item.get("user_name"),
        )


@dataclass
class Segment:
    speaker: str
    timestamp: str
    text: str

    @property
    def offset(self) -> timedelta:
        hours, minutes, seconds = (int(part) for part in self.timestamp.split(":"))
        return timedelta(hours=hours, minutes=minutes, seconds=seconds)


@dataclass
class NormalizedTranscript:
    segments: List[Segment] = field(default_factory=list)
    raw_text: str = ""


@dataclass
class ActionItem:
    text: str
    confidence: float
    assignee: Optional[str] = None
    due_date: Optional[str] = None


@dataclass
class MeetingRecord:
    """Everything the note writer needs for one meeting."""

    ref: MeetingRef
    transcript: NormalizedTranscript
    action_items: List[ActionItem] = field(default_factory=list)
    key_points: Optional[List[str]] = None
    overview: Optional[str] = None
    source: str = "transcript"


@dataclass
class ProcessedEntry:
    uuid: str
    meeting_id: str
    processed_at: datetime
    output_location: str
    content_hash: str


@dataclass
class RunStatistics:
    total_processed: int = 0
    last_run_status: RunStatus = RunStatus.SUCCESS
    last_run_at: Optional[datetime] = None
    consecutive_failures: int = 0


@dataclass
class RunState:
    last_fetch_timestamp: datetime
    processed_entries: Dict[str, ProcessedEntry] = field(default_factory=dict)
    statistics: RunStatistics = field(default_factory=RunStatistics)


@dataclass
class RunResult:
    """Outcome of a single ``run_once`` call."""

    status: RunStatus
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    window: Optional[DateWindow] = None
    error: Optional[str] = None
