"""Automation profile resolution for dispatch payloads."""
import json
import logging
import os
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from processor.errors import ConfigurationError
from processor.models import AutomationProfile

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/airtable-automations.json'
DEFAULT_RELEASE_TAG = 'airtable-ics-assets'

FIELD_EVENT_NAME = 'Event Name'
FIELD_START = 'Start'
FIELD_END = 'End'
FIELD_LOCATION = 'Location'
FIELD_DESCRIPTION = 'Description'


def nonempty_string(value: Any) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else ''


def pick_string(obj: Any, keys: Iterable[str]) -> str:
    """Return the first non-empty string value among keys, or ''."""
    if not isinstance(obj, dict):
        return ''
    for key in keys:
        value = nonempty_string(obj.get(key))
        if value:
            return value
    return ''


def _read_json(path: str, what: str) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except OSError as e:
        raise ConfigurationError(f"Failed to read {what} at {path}: {e}") from e

    try:
        return json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e


def read_dispatch_payload(path: str) -> Dict[str, Any]:
    """
    Read a dispatch event file.

    A repository_dispatch event wraps the payload in client_payload; a bare
    payload file is accepted as is.
    """
    parsed = _read_json(path, 'event JSON')
    if isinstance(parsed, dict) and isinstance(parsed.get('client_payload'), dict):
        return parsed['client_payload']
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Event JSON at {path} must be an object.")
    return parsed


def load_config_map(path: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
    """
    Load the automation config file.

    Args:
        path: Config file path (default: DEFAULT_CONFIG_PATH)

    Returns:
        Tuple of (absolute path, mapping of automation key to profile)

    Raises:
        ConfigurationError: If the file is unreadable, not an object, or empty
    """
    absolute_path = os.path.abspath(path or DEFAULT_CONFIG_PATH)
    parsed = _read_json(absolute_path, 'config file')

    if not isinstance(parsed, dict):
        raise ConfigurationError(
            f"Config file {absolute_path} must be a JSON object keyed by automation key."
        )
    if not parsed:
        raise ConfigurationError(f"Config file {absolute_path} is empty.")

    return absolute_path, parsed


def resolve_profile(
    payload: Mapping[str, Any],
    config_map: Mapping[str, Any],
    config_path: str = DEFAULT_CONFIG_PATH
) -> AutomationProfile:
    """
    Select and validate the automation profile for a dispatch payload.

    Args:
        payload: Dispatch payload with recordId, optional automationKey and tableName
        config_map: Automation key -> raw profile settings
        config_path: Config file path, for error messages

    Returns:
        AutomationProfile with defaults applied

    Raises:
        ConfigurationError: If the payload or the selected profile is incomplete
    """
    record_id = nonempty_string(payload.get('recordId'))
    if not record_id:
        raise ConfigurationError(
            "Dispatch payload is missing required client_payload.recordId"
        )

    available_keys = list(config_map.keys())
    automation_key = nonempty_string(payload.get('automationKey'))
    if not automation_key and len(available_keys) == 1:
        automation_key = available_keys[0]
    if not automation_key:
        raise ConfigurationError(
            f"Multiple automation configs found in {config_path} "
            f"({', '.join(available_keys)}). Include client_payload.automationKey."
        )

    selected = config_map.get(automation_key)
    if not isinstance(selected, dict):
        raise ConfigurationError(
            f'automationKey "{automation_key}" was not found in {config_path}.'
        )

    base_id = pick_string(selected, ['baseId', 'airtableBaseId'])
    table = (
        nonempty_string(payload.get('tableName'))
        or pick_string(selected, ['tableId', 'tableName', 'table'])
    )
    attachment_field = pick_string(
        selected, ['icsField', 'attachmentField', 'airtableIcsField']
    )
    marker_field = pick_string(selected, ['updatedAtField', 'airtableUpdatedAtField'])

    if not base_id:
        raise ConfigurationError(
            f'Missing baseId for automationKey "{automation_key}" in {config_path}.'
        )
    if not table:
        raise ConfigurationError(
            f'Missing table for automationKey "{automation_key}" in {config_path}. '
            f"Add tableId/tableName or pass client_payload.tableName."
        )
    if not attachment_field:
        raise ConfigurationError(
            f'Missing icsField for automationKey "{automation_key}" in {config_path}.'
        )
    if not marker_field:
        raise ConfigurationError(
            f'Missing updatedAtField for automationKey "{automation_key}" in {config_path}.'
        )

    return AutomationProfile(
        record_id=record_id,
        automation_key=automation_key,
        base_id=base_id,
        table=table,
        attachment_field=attachment_field,
        marker_field=marker_field,
        release_tag=pick_string(selected, ['releaseTag']) or DEFAULT_RELEASE_TAG,
        title_field=(
            pick_string(selected, ['eventNameField', 'summaryField', 'titleField'])
            or FIELD_EVENT_NAME
        ),
        start_field=pick_string(selected, ['startField']) or FIELD_START,
        end_field=pick_string(selected, ['endField']) or FIELD_END,
        location_field=pick_string(selected, ['locationField']) or FIELD_LOCATION,
        description_field=(
            pick_string(selected, ['descriptionField']) or FIELD_DESCRIPTION
        )
    )
