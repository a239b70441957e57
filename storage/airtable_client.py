"""Airtable client for record fetch, patch and attachment upload."""
import base64
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from processor.errors import StoreError

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(value, safe='')


def _parse_body(response: requests.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return response.json()
    except ValueError:
        return text


class AirtableClient:
    """Thin transport for one Airtable base and table. No retries."""

    API_URL = "https://api.airtable.com/v0"
    CONTENT_URL = "https://content.airtable.com/v0"

    def __init__(self, token: str, base_id: str, table: str, timeout: int = 30):
        """
        Initialize the client.

        Args:
            token: Personal access token
            base_id: Airtable base identifier
            table: Table id or name
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.token = token
        self.base_id = base_id
        self.table = table
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Accept': 'application/json'
        })

    def record_url(self, record_id: str) -> str:
        return (
            f"{self.API_URL}/{_segment(self.base_id)}/"
            f"{_segment(self.table)}/{_segment(record_id)}"
        )

    def upload_url(self, record_id: str, field: str) -> str:
        return (
            f"{self.CONTENT_URL}/{_segment(self.base_id)}/"
            f"{_segment(record_id)}/{_segment(field)}/uploadAttachment"
        )

    def _request(self, method: str, url: str, payload: Optional[dict] = None) -> Any:
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise StoreError(f"{method} {url} failed: {e}") from e

        body = _parse_body(response)
        if not response.ok:
            raise StoreError(
                f"{method} {url} failed ({response.status_code})",
                status=response.status_code,
                body=body
            )
        return body

    def fetch(self, record_id: str) -> Dict[str, Any]:
        """
        Fetch a record's fields.

        Returns:
            Mapping of field name to value (empty when the record has none)

        Raises:
            StoreError: On any non-success response
        """
        logger.info(f"Fetching record {record_id} from table {self.table}")
        record = self._request('GET', self.record_url(record_id))
        return _fields_of(record)

    def patch(self, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch named fields of a record.

        Returns:
            The record's updated fields mapping

        Raises:
            StoreError: On any non-success response
        """
        logger.info(
            f"Patching record {record_id} fields: {', '.join(sorted(fields))}"
        )
        record = self._request(
            'PATCH',
            self.record_url(record_id),
            payload={'fields': fields}
        )
        return _fields_of(record)

    def upload_attachment(
        self,
        record_id: str,
        field: str,
        filename: str,
        content: bytes,
        content_type: str
    ) -> Any:
        """
        Upload file bytes into an attachment field.

        Returns:
            The raw parsed response; its shape is not fixed upstream

        Raises:
            StoreError: On any non-success response
        """
        logger.info(
            f"Uploading {filename} ({len(content)} bytes) to field "
            f'"{field}" of record {record_id}'
        )
        return self._request(
            'POST',
            self.upload_url(record_id, field),
            payload={
                'contentType': content_type,
                'filename': filename,
                'file': base64.b64encode(content).decode('ascii')
            }
        )


def _fields_of(record: Any) -> Dict[str, Any]:
    if isinstance(record, dict) and isinstance(record.get('fields'), dict):
        return record['fields']
    return {}
