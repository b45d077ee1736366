"""Environment-sourced configuration for the badge sync service."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from processor.models import Credentials

TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class SyncConfig:
    """Runtime configuration."""
    portal_host: str
    credentials: Credentials
    propagation_wait_seconds: float = 45
    refresh_buffer: bool = True
    timeout_seconds: int = 30
    interval_minutes: int = 15
    startup_delay_seconds: float = 15
    store_url: Optional[str] = None
    store_key: Optional[str] = None
    store_table: str = 'presences'
    store_conflict_mode: str = 'ignore'
    store_on_conflict: Optional[str] = 'badgeId,timestamp'
    local_store_table: Optional[str] = None
    local_store_endpoint_url: Optional[str] = None
    aws_region: Optional[str] = None
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> 'SyncConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Environment mapping (default: os.environ)

        Returns:
            SyncConfig instance

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        credentials = Credentials(
            identifier=environ.get('PORTAL_IDENTIFIER', ''),
            secret=environ.get('PORTAL_SECRET', ''),
            device_id=environ.get('PORTAL_DEVICE_ID', ''),
            installation_id=environ.get('PORTAL_INSTALLATION_ID', ''),
            retrieval_unit_id=environ.get('PORTAL_RETRIEVAL_UNIT_ID') or None
        )

        return cls(
            portal_host=environ.get('PORTAL_HOST', 'www.intratone.info'),
            credentials=credentials,
            propagation_wait_seconds=float(
                environ.get('PROPAGATION_WAIT_SECONDS', '45')
            ),
            refresh_buffer=(
                environ.get('REFRESH_BUFFER_ENABLED', 'true').lower()
                in TRUE_VALUES
            ),
            timeout_seconds=int(environ.get('TIMEOUT_SECONDS', '30')),
            interval_minutes=int(environ.get('SYNC_INTERVAL_MINUTES', '15')),
            startup_delay_seconds=float(
                environ.get('STARTUP_DELAY_SECONDS', '15')
            ),
            store_url=environ.get('STORE_URL') or None,
            store_key=environ.get('STORE_KEY') or None,
            store_table=environ.get('STORE_TABLE', 'presences'),
            store_conflict_mode=environ.get('STORE_CONFLICT_MODE', 'ignore'),
            store_on_conflict=(
                environ.get('STORE_ON_CONFLICT', 'badgeId,timestamp') or None
            ),
            local_store_table=environ.get('LOCAL_STORE_TABLE') or None,
            local_store_endpoint_url=(
                environ.get('LOCAL_STORE_ENDPOINT_URL') or None
            ),
            aws_region=environ.get('AWS_REGION') or None,
            log_level=environ.get('LOG_LEVEL', 'INFO')
        )
