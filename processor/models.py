"""Data models for badge event synchronization."""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

ISO_UTC_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


@dataclass(frozen=True)
class Credentials:
    """Portal login credentials and target identifiers."""
    identifier: str
    secret: str
    device_id: str
    installation_id: str
    retrieval_unit_id: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.identifier and self.secret)


@dataclass(frozen=True)
class Session:
    """Authenticated portal session, valid for a single run."""
    sid: str
    token: str
    cookies: Tuple[Tuple[str, str], ...]

    def cookie_dict(self) -> Dict[str, str]:
        return dict(self.cookies)


@dataclass(frozen=True)
class RawResponse:
    """Uninterpreted portal response."""
    status: int
    headers: Dict[str, str]
    content: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')


@dataclass(frozen=True)
class Event:
    """Badge access record extracted from the portal listing."""
    badge_id: str
    timestamp: datetime
    name: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.badge_id, self.iso_timestamp)

    @property
    def iso_timestamp(self) -> str:
        return self.timestamp.strftime(ISO_UTC_FORMAT)

    def to_record(self) -> Dict[str, str]:
        return {'badgeId': self.badge_id, 'timestamp': self.iso_timestamp}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'badgeId': self.badge_id,
            'timestamp': self.iso_timestamp,
            'name': self.name
        }


@dataclass
class StepTrace:
    """One entry of the diagnostic step trace."""
    name: str
    detail: str

    MAX_DETAIL_LENGTH = 500

    def __post_init__(self):
        if not isinstance(self.detail, str):
            self.detail = json.dumps(self.detail, default=str)
        self.detail = self.detail[:self.MAX_DETAIL_LENGTH]


@dataclass
class WriteResult:
    """Result of writing events to a single destination."""
    inserted: int = 0
    errors: int = 0
    skipped: bool = False
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'inserted': self.inserted, 'errors': self.errors}
        if self.skipped:
            data['skipped'] = True
        if self.note:
            data['note'] = self.note
        return data


@dataclass
class SyncResult:
    """Result of one orchestration run."""
    success: bool
    events_parsed: int = 0
    events_written: int = 0
    write_errors: int = 0
    error: Optional[str] = None
    steps: List[StepTrace] = field(default_factory=list)
    remote: Optional[WriteResult] = None
    local: Optional[WriteResult] = None
    sample_events: List[Event] = field(default_factory=list)
    started_at: Optional[str] = None
    duration_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'events_parsed': self.events_parsed,
            'events_written': self.events_written,
            'write_errors': self.write_errors,
            'started_at': self.started_at,
            'duration_seconds': self.duration_seconds
        }
        if self.error:
            data['error'] = self.error
        if self.remote is not None:
            data['remote'] = self.remote.to_dict()
        if self.local is not None:
            data['local'] = self.local.to_dict()
        if self.steps:
            data['steps'] = [
                {'name': step.name, 'detail': step.detail}
                for step in self.steps
            ]
        if self.sample_events:
            data['sample_events'] = [e.to_dict() for e in self.sample_events]
        return data


@dataclass
class ScheduleState:
    """Snapshot of the scheduler state."""
    interval_minutes: int
    running: bool
    run_in_progress: bool
    last_sync: Optional[str]
    last_result: Optional[SyncResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'interval_minutes': self.interval_minutes,
            'running': self.running,
            'run_in_progress': self.run_in_progress,
            'last_sync': self.last_sync,
            'last_result': (
                self.last_result.to_dict() if self.last_result else None
            )
        }
