"""End-to-end processing of one record change."""
import logging
import os
import tempfile
from typing import Optional

from processor.attachment_reconciler import AttachmentReconciler
from processor.ics_builder import ArtifactBuilder
from processor.marker_updater import MarkerUpdater
from processor.models import Artifact, AutomationProfile, DispatchResult

logger = logging.getLogger(__name__)


def write_artifact(artifact: Artifact, directory: Optional[str] = None) -> str:
    """Write the artifact to directory (default: system temp dir) and return its path."""
    path = os.path.join(directory or tempfile.gettempdir(), artifact.filename)
    with open(path, 'wb') as f:
        f.write(artifact.content)
    return path


def run_pipeline(
    profile: AutomationProfile,
    store,
    fallback_host=None,
    builder: Optional[ArtifactBuilder] = None,
    artifact_dir: Optional[str] = None
) -> DispatchResult:
    """
    Build, attach and mark one record.

    Steps run strictly in sequence: fetch the record, build the calendar
    artifact, attach it (direct upload, else fallback host), then write
    the processed marker. Callers must not run two pipelines for the same
    record concurrently.

    Args:
        profile: Resolved automation profile for the record
        store: Record store client
        fallback_host: Alternate asset host, or None when not configured
        builder: Artifact builder (default: ArtifactBuilder())
        artifact_dir: Where to keep a copy of the artifact (default: temp dir)

    Returns:
        DispatchResult describing the upload path and marker value
    """
    builder = builder or ArtifactBuilder()
    record_id = profile.record_id

    fields = store.fetch(record_id)
    artifact = builder.build_from_fields(record_id, fields, profile)
    artifact_path = write_artifact(artifact, artifact_dir)
    logger.info(f"ICS written to: {artifact_path}")

    reconciler = AttachmentReconciler(store, fallback_host)
    outcome = reconciler.attach(
        record_id,
        artifact,
        profile.attachment_field,
        profile.release_tag
    )

    marker_value = MarkerUpdater(store).mark_processed(record_id, profile.marker_field)

    return DispatchResult(
        record_id=record_id,
        upload_method=outcome.method,
        marker_value=marker_value,
        asset_url=outcome.asset_url,
        artifact_path=artifact_path
    )
