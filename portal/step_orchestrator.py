"""Sequencing of the portal's multi-step event retrieval protocol."""
import logging
import time
from typing import Callable, Dict, Optional

from portal.exceptions import (
    DegradedStepWarning,
    FatalStepError,
    PortalTransportError,
)
from portal.portal_client import PortalClient, response_indicates_failure
from processor.models import Session

logger = logging.getLogger(__name__)

StepRecorder = Callable[[str, str], None]


def _ignore_step(name: str, detail: str) -> None:
    pass


class StepOrchestrator:
    """
    Drives the portal through one retrieval run.

    Steps, in order:
        1. init_session       open server-side session and events module (fatal)
        2. trigger_retrieval  ask the hardware to push buffered events (non-fatal)
        3. wait               propagation delay, only after a successful trigger
        4. refresh_buffer     re-open the events module (optional, non-fatal)
        5. fetch_listing      retrieve the rendered event table (fatal)
    """

    CONNECT_PATH = '/fr/data/connect.php'
    EVENTS_PATH = '/fr/data/events/evts.php'
    RETRIEVAL_PATH = '/fr/data/events/evts_recup.php'
    LISTING_PATH = '/fr/data/events/evts_list.php'

    EXCERPT_LENGTH = 200

    def __init__(
        self,
        client: PortalClient,
        installation_id: str,
        retrieval_unit_id: Optional[str] = None,
        propagation_wait_seconds: float = 45,
        refresh_buffer: bool = True,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self.installation_id = installation_id
        self.retrieval_unit_id = retrieval_unit_id
        self.propagation_wait_seconds = propagation_wait_seconds
        self.refresh_buffer_enabled = refresh_buffer
        self._sleep = sleep

    def run(self, session: Session, record: StepRecorder = _ignore_step) -> str:
        """
        Execute all protocol steps for a session.

        Args:
            session: Authenticated session
            record: Callback receiving (step name, detail) for the step trace

        Returns:
            Raw listing payload (JSON envelope or bare markup)

        Raises:
            FatalStepError: If session init or the listing fetch fails
        """
        self.init_session(session)
        record('initSession', 'OK')

        try:
            self.trigger_retrieval(session)
        except DegradedStepWarning as e:
            logger.warning(f"{e} (continuing with already buffered events)")
            record('triggerRetrieval', f"failed (non-fatal): {e}")
        else:
            record('triggerRetrieval', 'OK')

            self.wait()
            record('wait', f"{self.propagation_wait_seconds}s")

            if self.refresh_buffer_enabled:
                try:
                    self.refresh_buffer(session)
                except DegradedStepWarning as e:
                    logger.warning(f"{e} (non-fatal)")
                    record('refreshBuffer', f"failed (non-fatal): {e}")
                else:
                    record('refreshBuffer', 'OK')

        listing = self.fetch_listing(session)
        record('fetchListing', f"Raw response: {listing}")
        return listing

    def init_session(self, session: Session) -> None:
        """
        Open the server-side session and the installation's events module.

        Raises:
            FatalStepError: If the events module cannot be opened
        """
        try:
            connect = self.client.call(session, self.CONNECT_PATH)
        except PortalTransportError as e:
            raise FatalStepError('initSession', str(e)) from e

        if not connect.ok or response_indicates_failure(connect):
            logger.warning(
                f"connect.php answered with a failure: "
                f"{connect.text[:self.EXCERPT_LENGTH]}"
            )
        else:
            logger.info("Server-side session initialized")

        self._post_checked(
            session, self.EVENTS_PATH, {'id': self.installation_id},
            step='initSession', error=FatalStepError
        )
        logger.info(f"Events module opened for installation {self.installation_id}")

    def trigger_retrieval(self, session: Session) -> None:
        """
        Ask the access-control unit to push its buffered events.

        Raises:
            DegradedStepWarning: If the portal refuses or the call fails
        """
        body = {}
        if self.retrieval_unit_id:
            body['id'] = self.retrieval_unit_id
        self._post_checked(
            session, self.RETRIEVAL_PATH, body,
            step='triggerRetrieval', error=DegradedStepWarning
        )
        logger.info("Retrieval triggered on the access-control unit")

    def wait(self) -> None:
        """Suspend the run while the hardware pushes its events."""
        logger.info(
            f"Waiting {self.propagation_wait_seconds}s for events to propagate"
        )
        self._sleep(self.propagation_wait_seconds)

    def refresh_buffer(self, session: Session) -> None:
        """
        Re-open the events module so the server buffer picks up pushed events.

        Raises:
            DegradedStepWarning: If the refresh fails
        """
        self._post_checked(
            session, self.EVENTS_PATH, {'id': self.installation_id},
            step='refreshBuffer', error=DegradedStepWarning
        )
        logger.info("Server-side event buffer refreshed")

    def fetch_listing(self, session: Session) -> str:
        """
        Retrieve the rendered event listing.

        Returns:
            Listing body as text

        Raises:
            FatalStepError: On transport failure or non-2xx status
        """
        try:
            response = self.client.call(session, self.LISTING_PATH)
        except PortalTransportError as e:
            raise FatalStepError('fetchListing', str(e)) from e

        if not response.ok:
            raise FatalStepError('fetchListing', f"HTTP {response.status}")

        logger.info(f"Fetched event listing ({len(response.content)} bytes)")
        return response.text

    def _post_checked(
        self,
        session: Session,
        path: str,
        body: Dict[str, str],
        step: str,
        error: type
    ) -> None:
        try:
            response = self.client.call(session, path, body)
        except PortalTransportError as e:
            raise error(step, str(e)) from e

        if not response.ok:
            raise error(step, f"HTTP {response.status}")
        if response_indicates_failure(response):
            raise error(step, response.text[:self.EXCERPT_LENGTH])
