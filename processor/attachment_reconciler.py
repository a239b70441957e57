"""Attachment reconciliation with a direct upload and a URL fallback."""
import logging
from typing import Any, Callable, List, Optional, Sequence

from processor.errors import FallbackError, ReconciliationError, StoreError
from processor.models import Artifact, AttachmentReference, UploadOutcome

logger = logging.getLogger(__name__)

PRIMARY = 'primary'
FALLBACK = 'fallback'

# Each extractor returns the candidate entries found at one location of the
# upload response, or None when that location is absent.
Extractor = Callable[[Any, str], Optional[List[Any]]]


def _nonempty(value: Any) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else ''


def _from_fields(response: Any, field: str) -> Optional[List[Any]]:
    if isinstance(response, dict) and isinstance(response.get('fields'), dict):
        entries = response['fields'].get(field)
        if isinstance(entries, list):
            return entries
    return None


def _from_field_name(response: Any, field: str) -> Optional[List[Any]]:
    if isinstance(response, dict) and isinstance(response.get(field), list):
        return response[field]
    return None


def _from_attachments(response: Any, field: str) -> Optional[List[Any]]:
    if isinstance(response, dict) and isinstance(response.get('attachments'), list):
        return response['attachments']
    return None


def _from_attachment(response: Any, field: str) -> Optional[List[Any]]:
    if isinstance(response, dict) and isinstance(response.get('attachment'), dict):
        return [response['attachment']]
    return None


def _from_bare_response(response: Any, field: str) -> Optional[List[Any]]:
    if isinstance(response, list):
        return response
    # A record-shaped response carries the record id, not an attachment id.
    if isinstance(response, dict) and 'fields' not in response:
        return [response]
    return None


RESPONSE_EXTRACTORS: Sequence[Extractor] = (
    _from_fields,
    _from_field_name,
    _from_attachments,
    _from_attachment,
    _from_bare_response,
)


def normalize_attachment(
    attachment: Any,
    fallback_filename: str
) -> Optional[AttachmentReference]:
    """
    Turn one attachment entry into a reference usable in a field patch.

    A store-native id wins; otherwise a url is used with the entry's
    filename, or fallback_filename when the entry has none.
    """
    if not isinstance(attachment, dict):
        return None

    attachment_id = _nonempty(attachment.get('id'))
    if attachment_id:
        return AttachmentReference(id=attachment_id)

    url = _nonempty(attachment.get('url'))
    if not url:
        return None

    filename = _nonempty(attachment.get('filename')) or fallback_filename
    return AttachmentReference(url=url, filename=filename or None)


def extract_latest_attachment(
    response: Any,
    field: str,
    fallback_filename: str,
    extractors: Sequence[Extractor] = RESPONSE_EXTRACTORS
) -> Optional[AttachmentReference]:
    """
    Probe an upload response for the newest attachment.

    The upstream success response has no single documented shape, so the
    extractors are tried in order. Within the first location that holds a
    usable entry, the last entry wins.
    """
    for extractor in extractors:
        entries = extractor(response, field)
        if not entries:
            continue
        for entry in reversed(entries):
            reference = normalize_attachment(entry, fallback_filename)
            if reference:
                logger.debug(f"Resolved attachment via {extractor.__name__}")
                return reference
    return None


class AttachmentReconciler:
    """Stores an artifact on a record and leaves exactly one attachment behind."""

    def __init__(self, store, fallback_host=None):
        """
        Initialize the reconciler.

        Args:
            store: Record store client (fetch, patch, upload_attachment)
            fallback_host: Alternate asset host with upload(tag, filename,
                content, content_type) -> url, or None when unavailable
        """
        self.store = store
        self.fallback_host = fallback_host

    def reconcile(
        self,
        record_id: str,
        artifact: Artifact,
        field: str
    ) -> AttachmentReference:
        """
        Upload the artifact directly and collapse the field to that attachment.

        Returns:
            The reference now held by the field

        Raises:
            StoreError: If the upload, re-fetch or patch is rejected
            ReconciliationError: If the upload cannot be confirmed
        """
        response = self.store.upload_attachment(
            record_id,
            field,
            artifact.filename,
            artifact.content,
            artifact.content_type
        )

        reference = extract_latest_attachment(response, field, artifact.filename)

        if reference is None:
            logger.info(
                f"Upload response for record {record_id} had no attachment, "
                f"re-fetching the record"
            )
            fields = self.store.fetch(record_id)
            existing = fields.get(field)
            if isinstance(existing, list) and existing:
                reference = normalize_attachment(existing[-1], artifact.filename)

        if reference is None:
            raise ReconciliationError(
                f"Direct upload succeeded but could not resolve attachment "
                f'for field "{field}" of record {record_id}.'
            )

        self.store.patch(record_id, {field: [reference.to_field_value()]})
        return reference

    def upload_via_fallback(
        self,
        record_id: str,
        artifact: Artifact,
        field: str,
        container_tag: str
    ) -> UploadOutcome:
        """
        Host the artifact externally and point the field at its URL.

        Raises:
            FallbackError: If no host is configured or the host fails
            StoreError: If the record patch is rejected
        """
        if self.fallback_host is None:
            raise FallbackError(
                "Fallback upload requires GITHUB_TOKEN and GITHUB_REPOSITORY. "
                "Direct upload also failed."
            )

        asset_url = self.fallback_host.upload(
            container_tag,
            artifact.filename,
            artifact.content,
            artifact.content_type
        )
        reference = AttachmentReference(url=asset_url, filename=artifact.filename)
        self.store.patch(record_id, {field: [reference.to_field_value()]})

        return UploadOutcome(method=FALLBACK, reference=reference, asset_url=asset_url)

    def attach(
        self,
        record_id: str,
        artifact: Artifact,
        field: str,
        container_tag: str
    ) -> UploadOutcome:
        """
        Attach the artifact, switching to the fallback host at most once.

        Returns:
            UploadOutcome naming the path that succeeded
        """
        try:
            reference = self.reconcile(record_id, artifact, field)
            return UploadOutcome(method=PRIMARY, reference=reference)
        except (StoreError, ReconciliationError) as e:
            logger.warning(
                f"Direct upload failed, trying URL fallback. Reason: {e}",
                extra={'record_id': record_id, 'error_type': type(e).__name__}
            )

        return self.upload_via_fallback(record_id, artifact, field, container_tag)
