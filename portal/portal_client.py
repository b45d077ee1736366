"""HTTP client for the portal's session-scoped endpoints."""
import json
import logging
from typing import Dict, Optional

import requests

from portal.exceptions import PortalTransportError
from processor.models import RawResponse, Session

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

FAILURE_MARKER = '"type":-1'


def browser_headers(host: str) -> Dict[str, str]:
    """Headers the portal expects from its own web front-end."""
    return {
        'User-Agent': USER_AGENT,
        'Origin': f"https://{host}",
        'Referer': f"https://{host}/fr/"
    }


def response_indicates_failure(response: RawResponse) -> bool:
    """
    Check a portal response for the ``type = -1`` failure sentinel.

    The portal reports logical failures with HTTP 200 and a JSON body whose
    ``type`` field is -1.

    Args:
        response: Raw portal response

    Returns:
        True if the body carries the failure sentinel
    """
    text = response.text
    try:
        payload = json.loads(text)
    except ValueError:
        return FAILURE_MARKER in text.replace(' ', '')

    if isinstance(payload, dict):
        return payload.get('type') == -1
    return False


class PortalClient:
    """Issues authenticated POST requests against the portal."""

    def __init__(self, host: str, timeout: int = 30):
        """
        Initialize the portal client.

        Args:
            host: Portal host name (no scheme)
            timeout: Per-request timeout in seconds (default: 30)
        """
        self.host = host
        self.timeout = timeout

    def call(
        self,
        session: Session,
        path: str,
        body: Optional[Dict[str, str]] = None
    ) -> RawResponse:
        """
        POST to a session-scoped endpoint.

        The session id is sent both as ``SID`` query parameter and form field,
        the bearer token as the ``token`` header, along with every cookie.

        Args:
            session: Authenticated session
            path: Endpoint path (e.g. ``/fr/data/events/evts_list.php``)
            body: Extra form fields

        Returns:
            RawResponse with status, headers and raw content

        Raises:
            PortalTransportError: On timeout or connection failure
        """
        form = dict(body or {})
        form['SID'] = session.sid

        headers = browser_headers(self.host)
        headers.update({
            'Content-Type': 'application/x-www-form-urlencoded; charset=UTF-8',
            'X-Requested-With': 'XMLHttpRequest',
            'Accept': '*/*',
            'token': session.token
        })

        url = f"https://{self.host}{path}"
        logger.debug(f"POST {path}")

        try:
            response = requests.post(
                url,
                params={'SID': session.sid},
                data=form,
                headers=headers,
                cookies=session.cookie_dict(),
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise PortalTransportError(
                f"{path} timed out after {self.timeout}s"
            ) from e
        except requests.RequestException as e:
            raise PortalTransportError(f"{path} request failed: {e}") from e

        return RawResponse(
            status=response.status_code,
            headers=dict(response.headers),
            content=response.content
        )
