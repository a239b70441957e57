"""Unit tests for AttachmentReconciler and upload response probing."""
from unittest.mock import Mock

import pytest

from processor.attachment_reconciler import (
    FALLBACK,
    PRIMARY,
    AttachmentReconciler,
    extract_latest_attachment,
    normalize_attachment,
)
from processor.errors import FallbackError, ReconciliationError, StoreError
from processor.models import Artifact, AttachmentReference


ASSET_URL = "https://github.com/acme/cal/releases/download/airtable-ics-assets/rec123.ics"


@pytest.fixture
def artifact():
    return Artifact(
        uid='airtable-rec123@airtable-wf',
        filename='rec123.ics',
        content=b'BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n'
    )


@pytest.fixture
def store():
    store = Mock()
    store.fetch.return_value = {}
    store.patch.return_value = {}
    return store


@pytest.fixture
def fallback_host():
    host = Mock()
    host.upload.return_value = ASSET_URL
    return host


class TestExtractLatestAttachment:
    """Test cases for probing upload responses."""

    def test_fields_mapping(self):
        response = {
            'id': 'rec123',
            'fields': {'ICS': [{'id': 'attOld'}, {'id': 'attNew'}]}
        }
        assert extract_latest_attachment(response, 'ICS', 'rec123.ics') == (
            AttachmentReference(id='attNew')
        )

    def test_field_name_at_top_level(self):
        response = {'ICS': [{'id': 'att1'}, {'id': 'att2'}]}
        assert extract_latest_attachment(response, 'ICS', 'x.ics').id == 'att2'

    def test_attachments_list(self):
        response = {'attachments': [{'id': 'att1'}, {'id': 'att2'}]}
        assert extract_latest_attachment(response, 'ICS', 'x.ics').id == 'att2'

    def test_single_attachment_object(self):
        response = {'attachment': {'id': 'att9'}}
        assert extract_latest_attachment(response, 'ICS', 'x.ics').id == 'att9'

    def test_bare_list(self):
        response = [{'id': 'att1'}, {'url': 'https://dl.example.com/a.ics'}]
        reference = extract_latest_attachment(response, 'ICS', 'rec123.ics')

        assert reference == AttachmentReference(
            url='https://dl.example.com/a.ics', filename='rec123.ics'
        )

    def test_bare_object(self):
        response = {'url': 'https://dl.example.com/a.ics', 'filename': 'a.ics'}
        reference = extract_latest_attachment(response, 'ICS', 'rec123.ics')

        assert reference.url == 'https://dl.example.com/a.ics'
        assert reference.filename == 'a.ics'

    def test_locations_searched_in_order(self):
        """Test that the fields mapping wins over later locations."""
        response = {
            'fields': {'ICS': [{'id': 'fromFields'}]},
            'ICS': [{'id': 'fromField'}],
            'attachments': [{'id': 'fromAttachments'}],
            'attachment': {'id': 'fromAttachment'}
        }
        assert extract_latest_attachment(response, 'ICS', 'x.ics').id == 'fromFields'

    def test_unusable_location_falls_through(self):
        response = {
            'fields': {'ICS': [{'size': 10}]},
            'attachment': {'id': 'att5'}
        }
        assert extract_latest_attachment(response, 'ICS', 'x.ics').id == 'att5'

    def test_record_shaped_response_without_attachment(self):
        """Test that the record's own id is never taken as an attachment id."""
        response = {'id': 'rec123', 'fields': {'ICS': []}}
        assert extract_latest_attachment(response, 'ICS', 'x.ics') is None

    @pytest.mark.parametrize('response', [None, 'ok', {}, {'status': 'done'}, []])
    def test_unrecognized_shapes(self, response):
        assert extract_latest_attachment(response, 'ICS', 'x.ics') is None

    def test_normalize_prefers_id(self):
        entry = {'id': 'att1', 'url': 'https://dl.example.com/a.ics'}
        assert normalize_attachment(entry, 'x.ics') == AttachmentReference(id='att1')

    def test_normalize_blank_values(self):
        assert normalize_attachment({'id': '  ', 'url': ''}, 'x.ics') is None
        assert normalize_attachment('att1', 'x.ics') is None


class TestAttachmentReconciler:
    """Test cases for AttachmentReconciler class."""

    def test_reconcile_collapses_to_new_attachment(self, store, artifact):
        """Test that stale entries are replaced by the single new reference."""
        store.upload_attachment.return_value = {
            'fields': {'ICS': [{'id': 'attStale1'}, {'id': 'attStale2'}, {'id': 'attNew'}]}
        }
        reconciler = AttachmentReconciler(store)

        reference = reconciler.reconcile('rec123', artifact, 'ICS')

        assert reference == AttachmentReference(id='attNew')
        store.upload_attachment.assert_called_once_with(
            'rec123', 'ICS', 'rec123.ics', artifact.content, 'text/calendar'
        )
        store.patch.assert_called_once_with('rec123', {'ICS': [{'id': 'attNew'}]})
        store.fetch.assert_not_called()

    def test_reconcile_refetches_when_response_unrecognized(self, store, artifact):
        """Test the re-fetch uses the last attachment on the record."""
        store.upload_attachment.return_value = {'status': 'queued'}
        store.fetch.return_value = {
            'ICS': [
                {'id': 'attOld'},
                {'url': 'https://dl.example.com/new', 'filename': 'rec123.ics'}
            ]
        }
        reconciler = AttachmentReconciler(store)

        reference = reconciler.reconcile('rec123', artifact, 'ICS')

        assert reference.url == 'https://dl.example.com/new'
        store.fetch.assert_called_once_with('rec123')
        store.patch.assert_called_once_with(
            'rec123',
            {'ICS': [{'url': 'https://dl.example.com/new', 'filename': 'rec123.ics'}]}
        )

    def test_reconcile_unresolved_raises(self, store, artifact):
        store.upload_attachment.return_value = {'status': 'queued'}
        store.fetch.return_value = {'ICS': []}
        reconciler = AttachmentReconciler(store)

        with pytest.raises(ReconciliationError):
            reconciler.reconcile('rec123', artifact, 'ICS')

        store.patch.assert_not_called()

    def test_attach_primary_success_never_uses_fallback(
        self, store, fallback_host, artifact
    ):
        store.upload_attachment.return_value = {'attachment': {'id': 'att1'}}
        reconciler = AttachmentReconciler(store, fallback_host)

        outcome = reconciler.attach('rec123', artifact, 'ICS', 'airtable-ics-assets')

        assert outcome.method == PRIMARY
        assert outcome.asset_url is None
        fallback_host.upload.assert_not_called()

    def test_attach_upload_failure_uses_fallback(self, store, fallback_host, artifact):
        """Test that a rejected upload switches to the fallback host once."""
        store.upload_attachment.side_effect = StoreError(
            'POST upload failed (422)', status=422, body={'error': 'INVALID_REQUEST'}
        )
        reconciler = AttachmentReconciler(store, fallback_host)

        outcome = reconciler.attach('rec123', artifact, 'ICS', 'airtable-ics-assets')

        assert outcome.method == FALLBACK
        assert outcome.asset_url == ASSET_URL
        fallback_host.upload.assert_called_once_with(
            'airtable-ics-assets', 'rec123.ics', artifact.content, 'text/calendar'
        )
        store.patch.assert_called_once_with(
            'rec123', {'ICS': [{'url': ASSET_URL, 'filename': 'rec123.ics'}]}
        )

    def test_attach_unconfirmed_upload_uses_fallback(
        self, store, fallback_host, artifact
    ):
        """Test that an empty re-fetch after an unrecognized response falls back."""
        store.upload_attachment.return_value = {}
        store.fetch.return_value = {}
        reconciler = AttachmentReconciler(store, fallback_host)

        outcome = reconciler.attach('rec123', artifact, 'ICS', 'airtable-ics-assets')

        assert outcome.method == FALLBACK
        store.fetch.assert_called_once_with('rec123')
        fallback_host.upload.assert_called_once()

    def test_attach_without_fallback_host_fails(self, store, artifact):
        store.upload_attachment.side_effect = StoreError('down', status=503)
        reconciler = AttachmentReconciler(store, None)

        with pytest.raises(FallbackError, match='GITHUB_TOKEN'):
            reconciler.attach('rec123', artifact, 'ICS', 'airtable-ics-assets')

    def test_fallback_failure_is_not_retried(self, store, fallback_host, artifact):
        store.upload_attachment.side_effect = StoreError('down', status=503)
        fallback_host.upload.side_effect = FallbackError('host down', status=500)
        reconciler = AttachmentReconciler(store, fallback_host)

        with pytest.raises(FallbackError):
            reconciler.attach('rec123', artifact, 'ICS', 'airtable-ics-assets')

        assert fallback_host.upload.call_count == 1
        assert store.upload_attachment.call_count == 1
        store.patch.assert_not_called()
