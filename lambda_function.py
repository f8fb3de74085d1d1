"""AWS Lambda handler serving Discord guild events as iCalendar feeds."""
import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Dict, Any, Optional

from feed.service import FeedService
from processor.event_processor import parse_snowflake
from processor.exceptions import (
    CancellationError,
    ConfigurationError,
    UpstreamError,
    ValidationError
)
from processor.markdown import markdown_to_html
from processor.models import FeedSettings

README_PATH = Path(__file__).parent / 'README.md'
EVENTS_ROUTE = re.compile(r'^/guilds/(?P<guild_id>[^/]+)/events\.ics$')

# Attributes every LogRecord has; anything else was passed through `extra`.
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

_service: Optional[FeedService] = None


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including fields passed via extra."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
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

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_settings() -> FeedSettings:
    """
    Read the feed configuration from environment variables.

    Raises:
        ConfigurationError: If DISCORD_TOKEN is missing or a number is malformed
    """
    token = os.environ.get('DISCORD_TOKEN', '')
    if not token:
        raise ConfigurationError("$DISCORD_TOKEN is not set")

    try:
        return FeedSettings(
            discord_token=token,
            discord_api_base=os.environ.get('DISCORD_API_BASE', FeedSettings.discord_api_base),
            cache_ttl=float(os.environ.get('CACHE_TTL_SECONDS', '300')),
            sweep_interval=float(os.environ.get('SWEEP_INTERVAL_SECONDS', '3600')),
            timeout=float(os.environ.get('TIMEOUT_SECONDS', '30')),
            log_level=os.environ.get('LOG_LEVEL', 'INFO')
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e


def get_service() -> FeedService:
    """Return the service of this container, creating it on cold start."""
    global _service
    if _service is None:
        service = FeedService(load_settings())
        service.start()
        _service = service
    return _service


def reset_service() -> None:
    """Stop and forget the service of this container."""
    global _service
    if _service is not None:
        _service.stop()
    _service = None


def _response(status_code: int, body: str, content_type: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    response_headers = {'Content-Type': content_type}
    if headers:
        response_headers.update(headers)
    return {
        'statusCode': status_code,
        'headers': response_headers,
        'body': body
    }


def _error(status_code: int, message: str) -> Dict[str, Any]:
    return _response(status_code, message + '\n', 'text/plain; charset=utf-8')


def _request_line(event: Dict[str, Any]) -> tuple[str, str]:
    """Extract method and path from an API Gateway v1 or v2 proxy event."""
    http = event.get('requestContext', {}).get('http', {})
    method = event.get('httpMethod') or http.get('method') or 'GET'
    path = event.get('rawPath') or event.get('path') or '/'
    return method.upper(), path


def render_index() -> Dict[str, Any]:
    """Render the README as the landing page."""
    readme = README_PATH.read_text(encoding='utf-8') if README_PATH.exists() else ''
    body = (
        "<!DOCTYPE html>\n"
        "<title>discord-ical-feed</title>\n"
        '<link rel="stylesheet" href="https://cdn.jsdelivr.net/npm/sakura.css@1.5.0/css/sakura-dark.css">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        + markdown_to_html(readme)
    )
    return _response(200, body, 'text/html; charset=utf-8')


def render_events(service: FeedService, guild_param: str) -> Dict[str, Any]:
    """
    Render the calendar feed of a guild.

    Args:
        service: Feed service of this container
        guild_param: Guild ID path segment

    Returns:
        API Gateway proxy response
    """
    logger = logging.getLogger(__name__)

    try:
        guild_id = parse_snowflake(guild_param)
    except ValueError:
        return _error(400, 'invalid guild ID')

    try:
        document = service.calendar(guild_id)
    except (UpstreamError, ValidationError, CancellationError) as e:
        logger.error(
            f"Failed to build calendar for guild {guild_id}: {e}",
            extra={'error_type': type(e).__name__}
        )
        return _error(500, str(e))

    return _response(
        200,
        document.decode('utf-8'),
        'text/calendar; charset=utf-8',
        headers={
            'Content-Disposition': 'inline; filename=events.ics',
            'Cache-Control': f'public, revalidate, max-age={int(service.settings.cache_ttl)}'
        }
    )


def handle_scheduled_sweep(service: FeedService) -> Dict[str, Any]:
    """Delete expired cache entries on a scheduled EventBridge invocation."""
    removed = service.cache.delete_expired()
    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sweep completed successfully',
            'removed': removed,
            'statistics': service.cache.stats.to_dict()
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the guild events feed.

    Args:
        event: API Gateway proxy event, or an EventBridge scheduled event
        context: Lambda context object

    Returns:
        Response dict with statusCode, headers and body
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        service = get_service()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return _error(500, str(e))

    if event.get('source') == 'aws.events':
        logger.info("Scheduled cache sweep started")
        return handle_scheduled_sweep(service)

    method, path = _request_line(event)
    logger.info(f"{method} {path}")

    try:
        if method not in ('GET', 'HEAD'):
            response = _error(405, 'method not allowed')
        elif path == '/':
            response = render_index()
        else:
            match = EVENTS_ROUTE.match(path)
            if match:
                response = render_events(service, match.group('guild_id'))
            else:
                response = _error(404, 'not found')
    except Exception as e:
        logger.error(
            f"Request failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        response = _error(500, 'internal server error')

    if method == 'HEAD':
        response['body'] = ''

    logger.info(
        f"{method} {path} -> {response['statusCode']}",
        extra={'duration_seconds': round(time.time() - start_time, 3)}
    )
    return response
