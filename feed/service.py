"""Feed service wiring the Discord client, processor, cache and encoder."""
import logging
from typing import List, Optional

from feed.calendar_encoder import encode_calendar
from processor.event_processor import EventProcessor
from processor.exceptions import ConfigurationError
from processor.models import Event, FeedSettings
from scraper.discord_events import DiscordEventsClient
from storage.event_cache import CacheSweeper, EventCache

logger = logging.getLogger(__name__)


class FeedService:
    """Serves guild event calendars from a shared cache."""

    def __init__(
        self,
        settings: FeedSettings,
        client: Optional[DiscordEventsClient] = None,
        processor: Optional[EventProcessor] = None
    ):
        """
        Initialize the service.

        Args:
            settings: Feed configuration
            client: Discord client (default: built from settings)
            processor: Event processor (default: markdown rendering processor)

        Raises:
            ConfigurationError: If the settings are unusable
        """
        if not settings.discord_token and client is None:
            raise ConfigurationError("DISCORD_TOKEN is not set")
        if settings.cache_ttl <= 0:
            raise ConfigurationError(
                f"cache TTL must be positive, got {settings.cache_ttl}"
            )

        self.settings = settings
        self.client = client or DiscordEventsClient(
            token=settings.discord_token,
            base_url=settings.discord_api_base,
            timeout=settings.timeout
        )
        self.processor = processor or EventProcessor()
        self.cache = EventCache(self.fetch_events, ttl=settings.cache_ttl)
        self.sweeper = CacheSweeper(self.cache, settings.sweep_interval)

        logger.info(
            "Initialized FeedService",
            extra={
                'cache_ttl': settings.cache_ttl,
                'sweep_interval': settings.sweep_interval,
                'timeout_seconds': settings.timeout
            }
        )

    def fetch_events(self, guild_id: int) -> List[Event]:
        """Fetch and convert the scheduled events of a guild, bypassing the cache."""
        scheduled_events = self.client.fetch_scheduled_events(guild_id)
        return self.processor.process_events(scheduled_events)

    def calendar(self, guild_id: int, timeout: Optional[float] = None) -> bytes:
        """
        Build the iCalendar document for a guild.

        Args:
            guild_id: Discord guild snowflake
            timeout: Seconds to wait for an in-flight fetch

        Returns:
            Encoded calendar document

        Raises:
            UpstreamError: If the events could not be fetched
            CancellationError: If waiting for the fetch timed out
            ValidationError: If an event is missing a required field
        """
        events = self.cache.get(guild_id, timeout=timeout)
        return encode_calendar(events)

    def start(self) -> bool:
        """Start the periodic cache sweep if enabled."""
        return self.sweeper.start()

    def stop(self) -> None:
        self.sweeper.stop()
