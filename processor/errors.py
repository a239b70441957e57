"""Exception hierarchy for the record dispatch pipeline."""
import json
from typing import Any, Optional, Sequence


class DispatchError(Exception):
    """Base class for every failure raised by the dispatch pipeline."""


class ConfigurationError(DispatchError):
    """Dispatch payload, automation profile or environment is unusable."""


class ValidationError(DispatchError):
    """Record fields cannot be turned into a calendar artifact."""


def _describe_body(body: Any) -> str:
    if body is None or body == '':
        return ''
    if isinstance(body, str):
        return body
    return json.dumps(body)


class StoreError(DispatchError):
    """
    Non-success response from the record store.

    Attributes:
        status: HTTP status code, or None when the request never completed
        body: Parsed JSON body, raw text, or None
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        detail = _describe_body(body)
        super().__init__(f"{message}: {detail}" if detail else message)
        self.status = status
        self.body = body

    @property
    def detail(self) -> str:
        """Body rendered as text, for matching on upstream error codes."""
        return _describe_body(self.body)


class ReconciliationError(DispatchError):
    """Upload was accepted but the new attachment could not be confirmed."""


class FallbackError(DispatchError):
    """The alternate asset host failed or is not configured."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        detail = _describe_body(body)
        super().__init__(f"{message} ({status}): {detail}" if status else message)
        self.status = status
        self.body = body


class MarkerTypeError(DispatchError):
    """Every candidate processed-marker representation was rejected."""

    def __init__(
        self,
        field: str,
        attempted: Sequence[str],
        last_error: Optional[StoreError] = None
    ):
        message = (
            f'Field "{field}" rejected both datetime and date values '
            f"({', '.join(attempted)}). Use an editable date/date-time or "
            f"text field for the processed marker."
        )
        if last_error is not None:
            message += f" Original error: {last_error}"
        super().__init__(message)
        self.field = field
        self.attempted = list(attempted)
        self.last_error = last_error
