"""Idempotent bulk writer for the remote REST presence store."""
import logging
from typing import Dict, List, Optional

import requests

from processor.models import Event, WriteResult

logger = logging.getLogger(__name__)

CONFLICT_MODES = {
    'ignore': 'ignore-duplicates',
    'merge': 'merge-duplicates',
}


class WriteBatchError(Exception):
    """A single batch was rejected by the destination."""

    def __init__(self, batch_number: int, message: str):
        super().__init__(f"Batch {batch_number} failed: {message}")
        self.batch_number = batch_number


def dedupe_events(events: List[Event]) -> List[Event]:
    """
    Drop events sharing a (badge id, timestamp) key, keeping the first.

    Args:
        events: Events in source order

    Returns:
        Events with unique keys, order preserved
    """
    seen = set()
    unique = []
    for event in events:
        if event.key in seen:
            continue
        seen.add(event.key)
        unique.append(event)
    return unique


class SupabaseUpsertWriter:
    """Writer for a PostgREST-style ``/rest/v1/<table>`` bulk insert endpoint."""

    BATCH_SIZE = 50
    ERROR_EXCERPT_LENGTH = 300

    def __init__(
        self,
        url: Optional[str],
        key: Optional[str],
        table: str = 'presences',
        conflict_mode: str = 'ignore',
        on_conflict: Optional[str] = 'badgeId,timestamp',
        batch_size: int = BATCH_SIZE,
        timeout: int = 30
    ):
        """
        Initialize the writer.

        Args:
            url: Base URL of the store (None disables writing)
            key: API key, also sent as bearer token
            table: Destination table
            conflict_mode: 'ignore' keeps existing rows, 'merge' overwrites them
            on_conflict: Column list of the uniqueness constraint
            batch_size: Events per request (default: 50)
            timeout: HTTP request timeout in seconds (default: 30)

        Raises:
            ValueError: If conflict_mode is unknown
        """
        if conflict_mode not in CONFLICT_MODES:
            raise ValueError(
                f"Unknown conflict mode '{conflict_mode}', "
                f"expected one of {sorted(CONFLICT_MODES)}"
            )
        self.url = (url or '').rstrip('/')
        self.key = key or ''
        self.table = table
        self.conflict_mode = conflict_mode
        self.on_conflict = on_conflict
        self.batch_size = batch_size
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    @property
    def endpoint(self) -> str:
        return f"{self.url}/rest/v1/{self.table}"

    def write(self, events: List[Event]) -> WriteResult:
        """
        Upsert events in batches of ``batch_size``.

        A failed batch only counts its own events as errors; remaining batches
        are still submitted.

        Args:
            events: Events to write

        Returns:
            WriteResult with inserted and error counts
        """
        if not events:
            return WriteResult()
        if not self.is_configured:
            logger.info("Store URL or key missing, skipping remote write")
            return WriteResult(skipped=True, note='destination not configured')

        events = dedupe_events(events)
        logger.info(f"Writing {len(events)} events to {self.endpoint}")
        result = WriteResult()

        for i in range(0, len(events), self.batch_size):
            batch = events[i:i + self.batch_size]
            batch_number = i // self.batch_size + 1

            try:
                self._submit_batch(batch_number, batch)
                result.inserted += len(batch)
            except WriteBatchError as e:
                logger.error(str(e))
                result.errors += len(batch)
                continue

        logger.info(
            f"Remote write complete: {result.inserted} written, "
            f"{result.errors} errors"
        )
        return result

    def _submit_batch(self, batch_number: int, batch: List[Event]) -> None:
        """
        POST one batch.

        Raises:
            WriteBatchError: On transport failure or non-2xx status
        """
        try:
            response = requests.post(
                self.endpoint,
                params=self._params(),
                json=[event.to_record() for event in batch],
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise WriteBatchError(batch_number, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise WriteBatchError(
                batch_number,
                f"HTTP {response.status_code} - "
                f"{response.text[:self.ERROR_EXCERPT_LENGTH]}"
            )

    def _headers(self) -> Dict[str, str]:
        return {
            'apikey': self.key,
            'Authorization': f"Bearer {self.key}",
            'Prefer': (
                f"resolution={CONFLICT_MODES[self.conflict_mode]},"
                "return=minimal"
            )
        }

    def _params(self) -> Dict[str, str]:
        if self.on_conflict:
            return {'on_conflict': self.on_conflict}
        return {}
