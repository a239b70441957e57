"""Calendar artifact builder for record fields."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterator, List, Mapping, Optional

from dateutil.parser import isoparse

from processor.errors import ValidationError
from processor.models import Artifact, AutomationProfile

logger = logging.getLogger(__name__)

CRLF = '\r\n'
FOLD_MARKER = ' '
MAX_LINE_OCTETS = 75


def normalize_text(value: Any) -> str:
    """
    Render a record field value as plain text.

    Args:
        value: Raw field value (string, number, list, object or None)

    Returns:
        Text representation; lists are joined with ", "
    """
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ', '.join(normalize_text(item) for item in value)
    return json.dumps(value)


def escape_text(value: str) -> str:
    """Escape backslash, newline, comma and semicolon for a TEXT value."""
    return (
        value
        .replace('\\', '\\\\')
        .replace('\r\n', '\\n')
        .replace('\n', '\\n')
        .replace('\r', '\\n')
        .replace(',', '\\,')
        .replace(';', '\\;')
    )


def _fold_units(line: str) -> Iterator[str]:
    # An escape pair is never split across a fold.
    i = 0
    while i < len(line):
        if line[i] == '\\' and i + 1 < len(line):
            yield line[i:i + 2]
            i += 2
        else:
            yield line[i]
            i += 1


def fold_line(line: str, max_octets: int = MAX_LINE_OCTETS) -> str:
    """
    Fold a content line so no physical line exceeds max_octets.

    Breaks are placed by UTF-8 byte count, never inside a multi-byte
    character or an escape pair. Continuation lines start with a single
    space, which counts towards their length.

    Args:
        line: Unfolded content line
        max_octets: Maximum octets per physical line, excluding CRLF

    Returns:
        Folded line joined with CRLF + space
    """
    if len(line.encode('utf-8')) <= max_octets:
        return line

    chunks: List[str] = []
    current = ''
    current_size = 0
    limit = max_octets
    for unit in _fold_units(line):
        size = len(unit.encode('utf-8'))
        if current_size + size > limit and current:
            chunks.append(current)
            current = ''
            current_size = 0
            limit = max_octets - len(FOLD_MARKER)
        current += unit
        current_size += size
    chunks.append(current)

    return (CRLF + FOLD_MARKER).join(chunks)


def to_ics_timestamp(value: datetime) -> str:
    """Format a datetime as a UTC compact timestamp (YYYYMMDDTHHMMSSZ)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """
    Parse a record timestamp into an aware UTC datetime.

    Naive values are read as UTC. Sub-second precision is truncated.

    Raises:
        ValidationError: If the value is missing or unparseable
    """
    if value is None or value == '':
        raise ValidationError(f"Missing required record field: {field_name}")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = isoparse(value.strip())
        except (ValueError, OverflowError) as e:
            raise ValidationError(
                f'Invalid date in record field "{field_name}": {value}'
            ) from e
    else:
        raise ValidationError(
            f'Invalid date in record field "{field_name}": {value!r}'
        )

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).replace(microsecond=0)


class ArtifactBuilder:
    """Builds the calendar artifact for a single record."""

    PRODID = '-//airtable_wf//Airtable Dispatch//EN'
    UID_DOMAIN = 'airtable-wf'

    def generate_uid(self, record_id: str) -> str:
        """
        Generate the stable event identifier for a record.

        The identifier depends on the record id only, so rebuilding the
        artifact after a field change still describes the same event.
        """
        return f"airtable-{record_id}@{self.UID_DOMAIN}"

    def filename_for(self, record_id: str) -> str:
        return f"{record_id}.ics"

    def build(
        self,
        record_id: str,
        title: str,
        start: Any,
        end: Any,
        location: str = '',
        description: str = '',
        now: Optional[datetime] = None,
        start_field: str = 'Start',
        end_field: str = 'End'
    ) -> Artifact:
        """
        Encode one event as a calendar artifact.

        Args:
            record_id: Record identifier
            title: Event title (required, non-empty after trimming)
            start: Start timestamp (ISO 8601 string or datetime)
            end: End timestamp, strictly after start
            location: Optional location text
            description: Optional description text
            now: Generation time for DTSTAMP (default: current time)
            start_field: Field name used in error messages
            end_field: Field name used in error messages

        Returns:
            Artifact with the encoded bytes, uid and filename

        Raises:
            ValidationError: If title, start or end are invalid
        """
        title = (title or '').strip()
        if not title:
            raise ValidationError(
                f"Missing required event title for record {record_id}"
            )

        start_at = parse_timestamp(start, start_field)
        end_at = parse_timestamp(end, end_field)
        if end_at <= start_at:
            raise ValidationError(
                f'Invalid event range: "{end_field}" must be after "{start_field}"'
            )

        stamp = now or datetime.now(timezone.utc)
        uid = self.generate_uid(record_id)

        lines = [
            'BEGIN:VCALENDAR',
            'VERSION:2.0',
            f'PRODID:{self.PRODID}',
            'CALSCALE:GREGORIAN',
            'METHOD:PUBLISH',
            'BEGIN:VEVENT',
            fold_line(f'UID:{uid}'),
            f'DTSTAMP:{to_ics_timestamp(stamp.replace(microsecond=0))}',
            f'DTSTART:{to_ics_timestamp(start_at)}',
            f'DTEND:{to_ics_timestamp(end_at)}',
            fold_line(f'SUMMARY:{escape_text(title)}'),
        ]

        location = (location or '').strip()
        description = (description or '').strip()
        if location:
            lines.append(fold_line(f'LOCATION:{escape_text(location)}'))
        if description:
            lines.append(fold_line(f'DESCRIPTION:{escape_text(description)}'))

        lines.extend(['END:VEVENT', 'END:VCALENDAR', ''])
        content = CRLF.join(lines).encode('utf-8')

        logger.debug(f"Built calendar artifact {uid} ({len(content)} bytes)")
        return Artifact(
            uid=uid,
            filename=self.filename_for(record_id),
            content=content
        )

    def build_from_fields(
        self,
        record_id: str,
        fields: Mapping[str, Any],
        profile: AutomationProfile,
        now: Optional[datetime] = None
    ) -> Artifact:
        """
        Build the artifact from a record's fields using the profile's field names.

        Raises:
            ValidationError: If the title field is empty or timestamps are invalid
        """
        title = normalize_text(fields.get(profile.title_field)).strip()
        if not title:
            available = ', '.join(sorted(fields.keys()))
            raise ValidationError(
                f"Missing required record field: {profile.title_field}. "
                f"Available fields: {available}"
            )

        return self.build(
            record_id=record_id,
            title=title,
            start=fields.get(profile.start_field),
            end=fields.get(profile.end_field),
            location=normalize_text(fields.get(profile.location_field)),
            description=normalize_text(fields.get(profile.description_field)),
            now=now,
            start_field=profile.start_field,
            end_field=profile.end_field
        )
