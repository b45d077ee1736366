"""Event parser for the portal's badge event listing.

The listing endpoint answers either with a JSON envelope ``{"html": "..."}``
or with the markup itself. The markup is a table where each data row looks
like::

    <tr data-serial="0A1B2C3D">
        <td><img ...></td>          # 0: icon
        <td>05/07/25 14:30</td>     # 1: local date and time
        <td>Badge</td>              # 2: event type
        <td>0A1B2C3D</td>           # 3: serial
        <td>DUPONT Jean</td>        # 4: holder name
    </tr>

Rows that do not follow this grammar are skipped, never raised.
"""
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from bs4 import BeautifulSoup

from processor.models import Event

logger = logging.getLogger(__name__)


class EventParser:
    """Parser turning a raw listing payload into Event objects."""

    SERIAL_ATTRIBUTE = 'data-serial'
    MIN_CELLS = 5
    DATE_CELL = 1
    NAME_CELL = 4

    # Months (inclusive) where the portal clock runs two hours ahead of UTC
    SUMMER_MONTHS = range(4, 11)
    SUMMER_OFFSET_HOURS = 2
    WINTER_OFFSET_HOURS = 1

    DATE_PATTERN = re.compile(
        r'(\d{2})/(\d{2})/(\d{2})\s+(\d{2}):(\d{2})'
    )
    ESCAPES = (
        ('\\/', '/'),
        ('\\"', '"'),
        ('\\n', ' '),
        ('\\r', ' '),
        ('\\t', ' '),
    )

    def parse(self, raw_payload: Union[str, bytes]) -> List[Event]:
        """
        Parse events from a listing payload.

        Args:
            raw_payload: JSON envelope with an ``html`` field, or bare markup

        Returns:
            List of Event objects in source row order
        """
        markup = self.extract_markup(raw_payload)
        if not markup:
            return []

        soup = BeautifulSoup(self.unescape(markup), 'html.parser')
        events = []
        skipped = 0

        for index, row in enumerate(soup.find_all('tr')):
            if row.find('th') is not None:
                continue

            event = self._parse_row(index, row)
            if event:
                events.append(event)
            else:
                skipped += 1

        logger.info(
            f"Parsed {len(events)} events from listing ({skipped} rows skipped)"
        )
        return events

    def extract_markup(self, raw_payload: Union[str, bytes]) -> str:
        """
        Return the markup carried by a listing payload.

        Args:
            raw_payload: Raw listing body

        Returns:
            Markup string, empty when the envelope carries none
        """
        if isinstance(raw_payload, bytes):
            raw_payload = raw_payload.decode('utf-8', errors='replace')
        if not raw_payload:
            return ''

        try:
            decoded = json.loads(raw_payload)
        except ValueError:
            return raw_payload

        if isinstance(decoded, dict):
            html = decoded.get('html')
            return html if isinstance(html, str) else ''
        if isinstance(decoded, str):
            return decoded
        return raw_payload

    def unescape(self, markup: str) -> str:
        """Strip JSON escape sequences left in double-escaped markup."""
        for sequence, replacement in self.ESCAPES:
            markup = markup.replace(sequence, replacement)
        return markup

    def _parse_row(self, index: int, row) -> Optional[Event]:
        badge_id = self._extract_badge_id(row)
        if not badge_id:
            logger.debug(f"Row {index} skipped: no badge identifier")
            return None

        cells = row.find_all('td')
        if len(cells) < self.MIN_CELLS:
            logger.debug(
                f"Row {index} skipped: {len(cells)} cells, "
                f"expected at least {self.MIN_CELLS}"
            )
            return None

        timestamp = self.parse_local_timestamp(
            self._cell_text(cells[self.DATE_CELL])
        )
        if timestamp is None:
            logger.debug(f"Row {index} skipped: unparseable date")
            return None

        name = self._cell_text(cells[self.NAME_CELL]) or None

        return Event(badge_id=badge_id, timestamp=timestamp, name=name)

    def _extract_badge_id(self, row) -> str:
        serial = row.get(self.SERIAL_ATTRIBUTE)
        if serial is None:
            holder = row.find(attrs={self.SERIAL_ATTRIBUTE: True})
            serial = holder.get(self.SERIAL_ATTRIBUTE) if holder else None
        return (serial or '').strip()

    def _cell_text(self, cell) -> str:
        return ' '.join(cell.get_text(' ', strip=True).split())

    def parse_local_timestamp(self, text: str) -> Optional[datetime]:
        """
        Parse a ``DD/MM/YY HH:MM`` portal date into a UTC datetime.

        Args:
            text: Cell text containing the local date and time

        Returns:
            Timezone-aware UTC datetime or None if the text does not match
        """
        match = self.DATE_PATTERN.search(text)
        if not match:
            return None

        day, month, year, hour, minute = (int(part) for part in match.groups())
        try:
            local = datetime(2000 + year, month, day, hour, minute,
                             tzinfo=timezone.utc)
        except ValueError:
            return None

        return local - timedelta(hours=self.utc_offset_hours(month))

    def utc_offset_hours(self, month: int) -> int:
        """Fixed daylight-saving approximation of the portal's timezone."""
        if month in self.SUMMER_MONTHS:
            return self.SUMMER_OFFSET_HOURS
        return self.WINTER_OFFSET_HOURS
