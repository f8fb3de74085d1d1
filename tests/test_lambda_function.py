"""Integration tests for Lambda handler."""
import json
import logging
import os
from unittest.mock import Mock, patch, MagicMock
import pytest

import lambda_function
from lambda_function import JsonFormatter, lambda_handler, load_settings
from processor.exceptions import (
    CancellationError,
    ConfigurationError,
    UpstreamError,
    ValidationError
)


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'DISCORD_TOKEN': 'test-token',
        'LOG_LEVEL': 'INFO',
        'CACHE_TTL_SECONDS': '300',
        'SWEEP_INTERVAL_SECONDS': '0',
        'TIMEOUT_SECONDS': '30'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture(autouse=True)
def reset_service():
    """Make every test start from a cold container."""
    lambda_function.reset_service()
    yield
    lambda_function.reset_service()


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 128
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def mock_service(mock_env):
    """Install a mock FeedService as the container's service."""
    service = MagicMock()
    service.settings.cache_ttl = 300
    service.calendar.return_value = b'BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n'
    lambda_function._service = service
    return service


def http_api_event(path, method='GET'):
    """API Gateway HTTP API (payload v2) event."""
    return {
        'version': '2.0',
        'rawPath': path,
        'requestContext': {'http': {'method': method, 'path': path}}
    }


def rest_api_event(path, method='GET'):
    """API Gateway REST API (payload v1) event."""
    return {'httpMethod': method, 'path': path, 'requestContext': {}}


class TestLambdaHandler:
    """Test cases for Lambda handler."""

    def test_events_feed(self, mock_service, mock_context):
        """Test serving the calendar of a guild."""
        response = lambda_handler(
            http_api_event('/guilds/41771983423143937/events.ics'),
            mock_context
        )

        assert response['statusCode'] == 200
        assert response['body'] == 'BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n'
        assert response['headers']['Content-Type'] == 'text/calendar; charset=utf-8'
        assert response['headers']['Content-Disposition'] == 'inline; filename=events.ics'
        assert response['headers']['Cache-Control'] == 'public, revalidate, max-age=300'
        mock_service.calendar.assert_called_once_with(41771983423143937)

    def test_events_feed_rest_api_event(self, mock_service, mock_context):
        """Test that payload v1 events are routed the same way."""
        response = lambda_handler(
            rest_api_event('/guilds/41771983423143937/events.ics'),
            mock_context
        )

        assert response['statusCode'] == 200
        mock_service.calendar.assert_called_once_with(41771983423143937)

    def test_head_request_has_empty_body(self, mock_service, mock_context):
        """Test that HEAD returns the feed headers without a body."""
        response = lambda_handler(
            http_api_event('/guilds/41771983423143937/events.ics', method='HEAD'),
            mock_context
        )

        assert response['statusCode'] == 200
        assert response['body'] == ''
        assert response['headers']['Content-Type'] == 'text/calendar; charset=utf-8'
        assert response['headers']['Cache-Control'] == 'public, revalidate, max-age=300'

    def test_invalid_guild_id(self, mock_service, mock_context):
        """Test that a non-numeric guild ID is rejected."""
        response = lambda_handler(http_api_event('/guilds/abc/events.ics'), mock_context)

        assert response['statusCode'] == 400
        assert response['body'] == 'invalid guild ID\n'
        mock_service.calendar.assert_not_called()

    @pytest.mark.parametrize(
        'error',
        [
            UpstreamError(41771983423143937, RuntimeError('Unknown Guild')),
            ValidationError(0, 'end time'),
            CancellationError(41771983423143937)
        ]
    )
    def test_events_feed_failure(self, mock_service, mock_context, error):
        """Test that feed errors are reported as 500 with their message."""
        mock_service.calendar.side_effect = error

        response = lambda_handler(
            http_api_event('/guilds/41771983423143937/events.ics'),
            mock_context
        )

        assert response['statusCode'] == 500
        assert response['body'] == f'{error}\n'

    def test_unexpected_error(self, mock_service, mock_context):
        """Test that unexpected errors do not leak details."""
        mock_service.calendar.side_effect = KeyError('boom')

        response = lambda_handler(
            http_api_event('/guilds/41771983423143937/events.ics'),
            mock_context
        )

        assert response['statusCode'] == 500
        assert response['body'] == 'internal server error\n'

    def test_index_page(self, mock_service, mock_context):
        """Test that the landing page renders the README."""
        response = lambda_handler(http_api_event('/'), mock_context)

        assert response['statusCode'] == 200
        assert response['headers']['Content-Type'] == 'text/html; charset=utf-8'
        assert response['body'].startswith('<!DOCTYPE html>')
        assert '<h1>discord-ical-feed</h1>' in response['body']

    def test_unknown_path(self, mock_service, mock_context):
        """Test that other paths are not found."""
        response = lambda_handler(http_api_event('/guilds/1/other.ics'), mock_context)

        assert response['statusCode'] == 404

    def test_method_not_allowed(self, mock_service, mock_context):
        """Test that only GET and HEAD are served."""
        response = lambda_handler(
            http_api_event('/guilds/41771983423143937/events.ics', method='POST'),
            mock_context
        )

        assert response['statusCode'] == 405
        mock_service.calendar.assert_not_called()

    def test_scheduled_sweep(self, mock_service, mock_context):
        """Test that EventBridge invocations sweep the cache."""
        mock_service.cache.delete_expired.return_value = 2
        mock_service.cache.stats.to_dict.return_value = {'swept': 2}

        response = lambda_handler(
            {'source': 'aws.events', 'detail-type': 'Scheduled Event'},
            mock_context
        )

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['removed'] == 2
        assert body['statistics'] == {'swept': 2}
        mock_service.cache.delete_expired.assert_called_once_with()

    def test_missing_token(self, mock_context):
        """Test that a missing DISCORD_TOKEN is reported as 500."""
        with patch.dict(os.environ, {}, clear=True):
            response = lambda_handler(http_api_event('/'), mock_context)

        assert response['statusCode'] == 500
        assert 'DISCORD_TOKEN' in response['body']

    @patch('lambda_function.FeedService')
    def test_service_created_once_per_container(self, mock_service_class, mock_env, mock_context):
        """Test that warm invocations reuse the cold start service."""
        service = mock_service_class.return_value
        service.settings.cache_ttl = 300
        service.calendar.return_value = b'BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n'

        lambda_handler(http_api_event('/guilds/1/events.ics'), mock_context)
        lambda_handler(http_api_event('/guilds/2/events.ics'), mock_context)

        mock_service_class.assert_called_once()
        service.start.assert_called_once_with()
        assert service.calendar.call_count == 2


class TestLoadSettings:
    """Test cases for configuration loading."""

    def test_defaults(self):
        """Test the default configuration."""
        with patch.dict(os.environ, {'DISCORD_TOKEN': 'token'}, clear=True):
            settings = load_settings()

        assert settings.discord_token == 'token'
        assert settings.discord_api_base == 'https://discord.com/api/v10'
        assert settings.cache_ttl == 300
        assert settings.sweep_interval == 3600
        assert settings.timeout == 30
        assert settings.log_level == 'INFO'

    def test_overrides(self, mock_env):
        """Test reading values from the environment."""
        settings = load_settings()

        assert settings.sweep_interval == 0
        assert settings.timeout == 30

    def test_invalid_number(self):
        """Test that malformed numbers are configuration errors."""
        env = {'DISCORD_TOKEN': 'token', 'CACHE_TTL_SECONDS': 'five minutes'}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError):
                load_settings()


class TestJsonFormatter:
    """Test cases for the JSON log formatter."""

    def test_format_includes_extra_fields(self):
        """Test that fields passed via extra are part of the output."""
        record = logging.LogRecord(
            name='test', level=logging.INFO, pathname=__file__, lineno=1,
            msg='Cached %d events', args=(3,), exc_info=None
        )
        record.duration_seconds = 0.25

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Cached 3 events'
        assert data['level'] == 'INFO'
        assert data['logger'] == 'test'
        assert data['duration_seconds'] == 0.25
