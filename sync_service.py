"""Badge event sync service: portal -> parser -> stores."""
import argparse
import json
import logging
import sys
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional

from portal.portal_client import PortalClient
from portal.session_manager import SessionManager
from portal.step_orchestrator import StepOrchestrator
from processor.event_parser import EventParser
from processor.models import (
    ISO_UTC_FORMAT,
    Credentials,
    StepTrace,
    SyncResult,
)
from scheduler.sync_scheduler import SyncScheduler
from storage.dynamodb_store import DynamoDBPresenceStore
from storage.upsert_writer import SupabaseUpsertWriter
from sync_config import SyncConfig

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


class SyncPipeline:
    """One end-to-end synchronization run, wrapped so it never raises."""

    SAMPLE_SIZE = 5
    LOG_DETAIL_LENGTH = 300

    def __init__(
        self,
        credentials: Credentials,
        session_manager: SessionManager,
        orchestrator: StepOrchestrator,
        parser: EventParser,
        writer: SupabaseUpsertWriter,
        local_store: Optional[DynamoDBPresenceStore] = None
    ):
        self.credentials = credentials
        self.session_manager = session_manager
        self.orchestrator = orchestrator
        self.parser = parser
        self.writer = writer
        self.local_store = local_store

    @classmethod
    def from_config(cls, config: SyncConfig) -> 'SyncPipeline':
        """Wire all components from configuration."""
        client = PortalClient(config.portal_host, timeout=config.timeout_seconds)
        orchestrator = StepOrchestrator(
            client,
            installation_id=config.credentials.installation_id,
            retrieval_unit_id=config.credentials.retrieval_unit_id,
            propagation_wait_seconds=config.propagation_wait_seconds,
            refresh_buffer=config.refresh_buffer
        )
        writer = SupabaseUpsertWriter(
            config.store_url,
            config.store_key,
            table=config.store_table,
            conflict_mode=config.store_conflict_mode,
            on_conflict=config.store_on_conflict,
            timeout=config.timeout_seconds
        )
        local_store = None
        if config.local_store_table:
            local_store = DynamoDBPresenceStore(
                config.local_store_table,
                conflict_mode=config.store_conflict_mode,
                endpoint_url=config.local_store_endpoint_url,
                region_name=config.aws_region
            )

        return cls(
            credentials=config.credentials,
            session_manager=SessionManager(
                config.portal_host, timeout=config.timeout_seconds
            ),
            orchestrator=orchestrator,
            parser=EventParser(),
            writer=writer,
            local_store=local_store
        )

    def run(self, debug: bool = False) -> SyncResult:
        """
        Login, drive the protocol, parse the listing and write the events.

        Args:
            debug: Collect a step trace and sample events in the result

        Returns:
            SyncResult; failures are reported with success=False
        """
        start_time = time.time()
        started_at = datetime.now(timezone.utc).strftime(ISO_UTC_FORMAT)
        steps: List[StepTrace] = []

        def record(name: str, detail) -> None:
            trace = StepTrace(name, detail)
            logger.info(f"[{name}] {trace.detail[:self.LOG_DETAIL_LENGTH]}")
            if debug:
                steps.append(trace)

        logger.info("Badge sync started", extra={'started_at': started_at})

        try:
            session = self.session_manager.login(self.credentials)
            record(
                'login',
                f"SID: {session.sid[:10]}... token: "
                f"{'yes' if session.token else 'no'}"
            )

            listing = self.orchestrator.run(session, record)

            events = self.parser.parse(listing)
            record('parseEvents', f"{len(events)} events parsed")

            result = SyncResult(
                success=True,
                events_parsed=len(events),
                steps=steps,
                started_at=started_at
            )
            if debug:
                result.sample_events = events[:self.SAMPLE_SIZE]

            if events:
                first, last = events[0], events[-1]
                logger.info(
                    f"First: {first.badge_id} -> {first.iso_timestamp} "
                    f"({first.name or '?'}), last: {last.badge_id} -> "
                    f"{last.iso_timestamp} ({last.name or '?'})"
                )
                self._write(events, result, record)
            else:
                logger.info("Nothing to write")

        except Exception as e:
            logger.error(
                f"Badge sync failed: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            record('error', str(e))
            result = SyncResult(
                success=False,
                error=str(e),
                steps=steps,
                started_at=started_at
            )

        result.duration_seconds = round(time.time() - start_time, 2)
        logger.info(
            "Badge sync finished",
            extra={
                'success': result.success,
                'events_parsed': result.events_parsed,
                'events_written': result.events_written,
                'write_errors': result.write_errors,
                'duration_seconds': result.duration_seconds
            }
        )
        return result

    def _write(self, events, result: SyncResult, record) -> None:
        result.remote = self.writer.write(events)
        record('writeRemote', result.remote.to_dict())
        result.events_written = result.remote.inserted
        result.write_errors = result.remote.errors

        if self.local_store is not None:
            result.local = self.local_store.write(events)
            record('writeLocal', result.local.to_dict())
            result.write_errors += result.local.errors


def build_scheduler(config: SyncConfig, pipeline: SyncPipeline) -> SyncScheduler:
    return SyncScheduler(
        pipeline.run,
        credentials_configured=config.credentials.is_configured,
        interval_minutes=config.interval_minutes,
        startup_delay_seconds=config.startup_delay_seconds
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Portal badge event sync")
    parser.add_argument(
        '--once', action='store_true',
        help='Run a single sync, print the result and exit'
    )
    parser.add_argument(
        '--debug', action='store_true',
        help='Include the step trace in the printed result'
    )
    args = parser.parse_args(argv)

    config = SyncConfig.from_env()
    setup_logging(config.log_level)
    pipeline = SyncPipeline.from_config(config)

    if args.once:
        result = pipeline.run(debug=args.debug)
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    scheduler = build_scheduler(config, pipeline)
    if not scheduler.start():
        return 1

    stop_event = threading.Event()
    try:
        stop_event.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        scheduler.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
