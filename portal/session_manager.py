"""Login against the access-control portal."""
import json
import logging

import requests

from portal.exceptions import AuthenticationError
from portal.portal_client import browser_headers
from processor.models import Credentials, Session

logger = logging.getLogger(__name__)


class SessionManager:
    """Authenticates against the portal and yields a Session."""

    LOGIN_PATH = '/fr/connexion.php'
    SESSION_COOKIES = ('PHPSESSID', 'Intratoneinfo')
    LANGUAGE_COOKIE = ('lng', '%2Ffr%2F')

    def __init__(self, host: str, timeout: int = 30):
        """
        Initialize the session manager.

        Args:
            host: Portal host name (no scheme)
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.host = host
        self.timeout = timeout

    def login(self, credentials: Credentials) -> Session:
        """
        Submit credentials and build a session from the response.

        Args:
            credentials: Portal credentials

        Returns:
            Session carrying session id, bearer token and cookies

        Raises:
            AuthenticationError: If no session id is returned
        """
        headers = browser_headers(self.host)
        headers['Accept'] = 'application/json, text/plain, */*'

        try:
            response = requests.post(
                f"https://{self.host}{self.LOGIN_PATH}",
                data={
                    'identifiant': credentials.identifier,
                    'mdp': credentials.secret,
                    'device': credentials.device_id
                },
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise AuthenticationError(f"Login request failed: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError(f"Login HTTP {response.status_code}")

        returned = response.cookies.get_dict()
        sid = next(
            (returned[name] for name in self.SESSION_COOKIES if returned.get(name)),
            None
        )
        if not sid:
            raise AuthenticationError(
                f"No session cookie in login response: {response.text[:300]}"
            )

        token = self._extract_token(response.text)
        if not token:
            logger.warning("Login response carried no bearer token")

        cookies = dict([self.LANGUAGE_COOKIE])
        for name in self.SESSION_COOKIES:
            cookies[name] = sid
        cookies.update(returned)

        logger.info(f"Logged in (SID: {sid[:10]}...)")
        return Session(sid=sid, token=token, cookies=tuple(cookies.items()))

    def _extract_token(self, body: str) -> str:
        """
        Extract the bearer token from the login JSON body.

        Args:
            body: Login response body

        Returns:
            Token string, empty if absent or the body is not JSON
        """
        try:
            payload = json.loads(body)
        except ValueError:
            return ''

        if not isinstance(payload, dict):
            return ''
        session = payload.get('session')
        if not isinstance(session, dict):
            return ''
        token = session.get('jwt')
        return token if isinstance(token, str) else ''
