"""Event processor for converting Discord scheduled events to calendar events."""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from processor.markdown import markdown_to_html
from processor.models import Event, ScheduledEvent

logger = logging.getLogger(__name__)

# First second of 2015, the epoch of Discord snowflakes, in milliseconds.
DISCORD_EPOCH_MS = 1420070400000


def snowflake_time(snowflake: str) -> datetime:
    """
    Decode the creation time embedded in a Discord snowflake.
    
    Args:
        snowflake: Snowflake as a decimal string
        
    Returns:
        UTC datetime the snowflake was generated at
        
    Raises:
        ValueError: If the snowflake is not a decimal number
    """
    milliseconds = (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(milliseconds / 1000, tz=timezone.utc)


def parse_snowflake(value: str) -> int:
    """
    Parse a snowflake ID from a URL path segment.
    
    Raises:
        ValueError: If the value is not a positive 64-bit decimal number
    """
    if not value or not value.isdigit():
        raise ValueError(f"invalid snowflake: {value!r}")
    snowflake = int(value)
    if snowflake <= 0 or snowflake >= 1 << 64:
        raise ValueError(f"invalid snowflake: {value!r}")
    return snowflake


class EventProcessor:
    """Converts scheduled events into calendar events."""
    
    def __init__(self, render: Callable[[str], str] = markdown_to_html):
        """
        Initialize the processor.
        
        Args:
            render: Markdown to HTML transform applied to descriptions
        """
        self.render = render
    
    def process_events(self, scheduled_events: List[ScheduledEvent]) -> List[Event]:
        """
        Convert scheduled events to calendar events, keeping their order.
        
        Args:
            scheduled_events: Events from the Discord client
            
        Returns:
            List of Event objects, one per scheduled event
        """
        events = [self._process_single_event(event) for event in scheduled_events]
        logger.debug(f"Converted {len(events)} scheduled events")
        return events
    
    def _process_single_event(self, event: ScheduledEvent) -> Event:
        """
        Convert a single scheduled event.
        
        Timestamps that cannot be parsed are left unset so that encoding
        reports the event as incomplete.
        """
        created_at = None
        try:
            created_at = snowflake_time(event.id)
        except ValueError:
            logger.warning(f"Scheduled event has an invalid ID: {event.id!r}")
        
        description = None
        if event.description:
            description = self.render(event.description)
        
        return Event(
            id=event.id,
            created_at=created_at,
            start=self._parse_timestamp(event.scheduled_start_time),
            end=self._parse_timestamp(event.scheduled_end_time),
            summary=event.name or None,
            description=description or None,
            location=event.location or None
        )
    
    def _parse_timestamp(self, value: Optional[str]) -> Optional[datetime]:
        """
        Parse an ISO 8601 timestamp from the Discord API.
        
        Args:
            value: Timestamp string such as "2024-01-15T19:00:00+00:00"
            
        Returns:
            Timezone-aware datetime, or None if absent or unparsable
        """
        if not value:
            return None
        
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            logger.warning(f"Invalid timestamp from Discord: {value!r}")
            return None
        
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
