"""Processed-marker update for fields of unknown type."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from processor.errors import MarkerTypeError, StoreError

logger = logging.getLogger(__name__)

INVALID_VALUE_FOR_COLUMN = 'INVALID_VALUE_FOR_COLUMN'


def is_invalid_value_for_column(error: StoreError) -> bool:
    """True when the store rejected a value only because of the column type."""
    return INVALID_VALUE_FOR_COLUMN in error.detail or INVALID_VALUE_FOR_COLUMN in str(error)


def marker_candidates(now: datetime) -> List[str]:
    """
    Build the marker representations to try, most precise first.

    Returns:
        [ISO 8601 timestamp with milliseconds and Z, YYYY-MM-DD date]
    """
    stamp = now.astimezone(timezone.utc).isoformat(timespec='milliseconds')
    stamp = stamp.replace('+00:00', 'Z')
    return [stamp, stamp[:10]]


class MarkerUpdater:
    """Writes the processed marker, probing for a value the field accepts."""

    def __init__(self, store):
        self.store = store

    def mark_processed(
        self,
        record_id: str,
        field: str,
        now: Optional[datetime] = None
    ) -> str:
        """
        Set the marker field to the current time.

        Candidates are tried in order. A column-type rejection moves on to
        the next candidate; any other store error aborts immediately.

        Args:
            record_id: Record to mark
            field: Name of the marker field
            now: Time to record (default: current UTC time)

        Returns:
            The value the store accepted

        Raises:
            MarkerTypeError: If every candidate is rejected
            StoreError: On any other store failure
        """
        candidates = marker_candidates(now or datetime.now(timezone.utc))
        last_error = None

        for candidate in candidates:
            try:
                self.store.patch(record_id, {field: candidate})
                logger.info(f'Updated field "{field}" -> {candidate}')
                return candidate
            except StoreError as e:
                if not is_invalid_value_for_column(e):
                    raise
                logger.info(f'Field "{field}" rejected value {candidate}, trying next')
                last_error = e

        raise MarkerTypeError(field, candidates, last_error)
