"""Data models for record dispatch processing."""
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class AutomationProfile:
    """Resolved configuration for one automation key."""
    record_id: str
    automation_key: str
    base_id: str
    table: str
    attachment_field: str
    marker_field: str
    release_tag: str = 'airtable-ics-assets'
    title_field: str = 'Event Name'
    start_field: str = 'Start'
    end_field: str = 'End'
    location_field: str = 'Location'
    description_field: str = 'Description'


@dataclass(frozen=True)
class Artifact:
    """Encoded calendar file built for one record."""
    uid: str
    filename: str
    content: bytes
    content_type: str = 'text/calendar'


@dataclass(frozen=True)
class AttachmentReference:
    """Canonical pointer to the current attachment, by id or by URL."""
    id: Optional[str] = None
    url: Optional[str] = None
    filename: Optional[str] = None

    def to_field_value(self) -> Dict[str, str]:
        """Render the reference as the store expects it inside a field."""
        if self.id:
            return {'id': self.id}
        value = {'url': self.url}
        if self.filename:
            value['filename'] = self.filename
        return value


@dataclass
class UploadOutcome:
    """Which upload path stored the artifact."""
    method: str
    reference: AttachmentReference
    asset_url: Optional[str] = None


@dataclass
class DispatchResult:
    """Result of one pipeline run."""
    record_id: str
    upload_method: str
    marker_value: str
    asset_url: Optional[str] = None
    artifact_path: Optional[str] = None
