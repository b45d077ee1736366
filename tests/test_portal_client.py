"""Unit tests for PortalClient."""
from urllib.parse import parse_qs, urlparse

import pytest
import responses
from requests.exceptions import Timeout

from portal.exceptions import PortalTransportError
from portal.portal_client import PortalClient, response_indicates_failure
from processor.models import RawResponse, Session

LIST_URL = "https://portal.example.com/fr/data/events/evts_list.php"


@pytest.fixture
def session():
    """Create a sample session."""
    return Session(
        sid='sid-123',
        token='jwt-abc',
        cookies=(
            ('lng', '%2Ffr%2F'),
            ('PHPSESSID', 'sid-123'),
            ('Intratoneinfo', 'sid-123'),
        )
    )


class TestPortalClient:
    """Test cases for PortalClient class."""

    @responses.activate
    def test_call_attaches_session(self, session):
        """Test SID in query and form, token header and cookies."""
        responses.add(responses.POST, LIST_URL, json={'html': ''}, status=200)

        client = PortalClient('portal.example.com')
        response = client.call(session, '/fr/data/events/evts_list.php')

        assert response.status == 200
        assert response.ok
        request = responses.calls[0].request
        assert parse_qs(urlparse(request.url).query) == {'SID': ['sid-123']}
        assert parse_qs(request.body) == {'SID': ['sid-123']}
        assert request.headers['token'] == 'jwt-abc'
        assert request.headers['X-Requested-With'] == 'XMLHttpRequest'
        assert 'PHPSESSID=sid-123' in request.headers['Cookie']
        assert 'Intratoneinfo=sid-123' in request.headers['Cookie']

    @responses.activate
    def test_call_merges_body_with_sid(self, session):
        """Test that extra form fields are sent along with SID."""
        url = "https://portal.example.com/fr/data/events/evts.php"
        responses.add(responses.POST, url, body='{"type":1}', status=200)

        client = PortalClient('portal.example.com')
        client.call(session, '/fr/data/events/evts.php', {'id': '114449'})

        assert parse_qs(responses.calls[0].request.body) == {
            'id': ['114449'],
            'SID': ['sid-123']
        }

    @responses.activate
    def test_call_returns_error_status_without_raising(self, session):
        """Test that HTTP errors are returned, not interpreted."""
        responses.add(responses.POST, LIST_URL, body='Server Error', status=500)

        response = PortalClient('portal.example.com').call(
            session, '/fr/data/events/evts_list.php'
        )

        assert response.status == 500
        assert not response.ok
        assert response.content == b'Server Error'

    @responses.activate
    def test_call_timeout_raises_transport_error(self, session):
        """Test that a timeout surfaces as a transport error without retry."""
        responses.add(responses.POST, LIST_URL, body=Timeout('Request timed out'))

        with pytest.raises(PortalTransportError, match='timed out'):
            PortalClient('portal.example.com', timeout=30).call(
                session, '/fr/data/events/evts_list.php'
            )

        assert len(responses.calls) == 1


class TestResponseIndicatesFailure:
    """Test cases for the failure sentinel check."""

    @pytest.mark.parametrize('body,expected', [
        (b'{"type":-1,"message":"Erreur"}', True),
        (b'{"type": 1}', False),
        (b'{"html": "<table></table>"}', False),
        (b'[1, 2, 3]', False),
        (b'<html>"type": -1</html>', True),
        (b'<table></table>', False),
    ])
    def test_sentinel_detection(self, body, expected):
        """Test JSON and raw sentinel detection."""
        response = RawResponse(status=200, headers={}, content=body)
        assert response_indicates_failure(response) is expected
