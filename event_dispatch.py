"""Entry point for Airtable record-change dispatch events."""
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional

from automation_config import load_config_map, read_dispatch_payload, resolve_profile
from processor.errors import ConfigurationError
from processor.pipeline import run_pipeline
from storage.airtable_client import AirtableClient
from storage.github_release_host import GitHubReleaseHost


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= context."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in self.RESERVED and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _require_env(name: str) -> str:
    value = os.environ.get(name, '').strip()
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def build_fallback_host(timeout: int) -> Optional[GitHubReleaseHost]:
    """Create the release host from the environment, or None without credentials."""
    token = os.environ.get('GITHUB_TOKEN', '').strip()
    repo = os.environ.get('GITHUB_REPOSITORY', '').strip()
    if not token or not repo:
        return None
    return GitHubReleaseHost(
        token=token,
        repo=repo,
        api_url=os.environ.get('GITHUB_API_URL') or None,
        timeout=timeout
    )


def dispatch_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Process one record-change event.

    Args:
        event: Dispatch payload, bare or wrapped in client_payload
        context: Invocation context (unused)

    Returns:
        Response dict with statusCode and a JSON body
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    config_path = os.environ.get('AIRTABLE_CONFIG_PATH') or None

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    payload = event.get('client_payload') if isinstance(event.get('client_payload'), dict) else event
    record_id = payload.get('recordId')

    try:
        token = _require_env('AIRTABLE_TOKEN')
        resolved_path, config_map = load_config_map(config_path)
        profile = resolve_profile(payload, config_map, resolved_path)

        logger.info(f"Config file: {resolved_path}")
        logger.info(
            f"Processing Airtable record: {profile.record_id}",
            extra={
                'record_id': profile.record_id,
                'automation_key': profile.automation_key,
                'table': profile.table
            }
        )

        store = AirtableClient(
            token=token,
            base_id=profile.base_id,
            table=profile.table,
            timeout=timeout_seconds
        )
        result = run_pipeline(profile, store, build_fallback_host(timeout_seconds))

        duration = time.time() - start_time
        logger.info(
            f"Attachment method: {result.upload_method}",
            extra={
                'record_id': result.record_id,
                'upload_method': result.upload_method,
                'asset_url': result.asset_url,
                'marker_value': result.marker_value,
                'duration_seconds': round(duration, 2)
            }
        )
        if result.asset_url:
            logger.info(f"Fallback asset URL: {result.asset_url}")

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Record processed successfully',
                'record_id': result.record_id,
                'upload_method': result.upload_method,
                'asset_url': result.asset_url,
                'marker_value': result.marker_value,
                'duration_seconds': round(duration, 2)
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Failed to process Airtable event: {str(e)}",
            extra={
                'record_id': record_id,
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Failed to process Airtable event',
                'record_id': record_id,
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the dispatcher for an event file.

    The event path comes from GITHUB_EVENT_PATH, else the first argument.

    Returns:
        Process exit status: 0 on success, 1 on any failure
    """
    argv = sys.argv if argv is None else argv
    event_path = os.environ.get('GITHUB_EVENT_PATH') or (argv[1] if len(argv) > 1 else '')

    if not event_path:
        setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
        logging.getLogger(__name__).error(
            "No event payload path found. Set GITHUB_EVENT_PATH or pass a JSON file path."
        )
        return 1

    try:
        payload = read_dispatch_payload(event_path)
    except ConfigurationError as e:
        setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
        logging.getLogger(__name__).error(str(e))
        return 1

    response = dispatch_handler(payload, None)
    return 0 if response['statusCode'] == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
