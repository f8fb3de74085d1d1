"""Discord REST client for guild scheduled events."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from processor.models import ScheduledEvent

logger = logging.getLogger(__name__)


class DiscordEventsClient:
    """Client for the Discord guild scheduled events endpoint."""
    
    BASE_URL = "https://discord.com/api/v10"
    USER_AGENT = "DiscordBot (https://github.com/discord-ical-feed, 1.0)"
    MAX_RETRY_AFTER = 10.0
    
    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: float = 30,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Discord client.
        
        Args:
            token: Bot token, sent as "Authorization: Bot <token>"
            base_url: API root (default: Discord API v10)
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts made when Discord answers 429 (default: 3)
            session: Optional requests session to reuse
        """
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bot {token}',
            'User-Agent': self.USER_AGENT
        })
    
    def fetch_scheduled_events(self, guild_id: int) -> List[ScheduledEvent]:
        """
        Fetch the scheduled events of a guild.
        
        Args:
            guild_id: Discord guild snowflake
            
        Returns:
            List of ScheduledEvent objects in API order
            
        Raises:
            requests.RequestException: If the request fails or times out
        """
        logger.info(f"Fetching scheduled events for guild {guild_id}")
        
        payload = self._get_json(
            f"/guilds/{guild_id}/scheduled-events",
            params={'with_user_count': 'false'}
        )
        events = [self._parse_scheduled_event(item) for item in payload]
        
        logger.info(f"Fetched {len(events)} scheduled events for guild {guild_id}")
        return events
    
    def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        """
        GET a Discord endpoint, honoring rate limit responses.
        
        Args:
            path: Endpoint path below the API root
            params: Query parameters
            
        Returns:
            Decoded JSON body
            
        Raises:
            requests.RequestException: If the request fails or the rate
                limit persists after all attempts
        """
        url = f"{self.base_url}{path}"
        
        for attempt in range(self.max_retries):
            response = self.session.get(url, params=params, timeout=self.timeout)
            
            if response.status_code == 429 and attempt < self.max_retries - 1:
                delay = self._retry_after(response)
                logger.warning(
                    f"Rate limited on {path} (attempt {attempt + 1}/{self.max_retries}). "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)
                continue
            
            response.raise_for_status()
            return response.json()
    
    def _retry_after(self, response: requests.Response) -> float:
        """
        Read the rate limit delay from a 429 response.
        
        Args:
            response: The 429 response
            
        Returns:
            Seconds to wait, capped at MAX_RETRY_AFTER
        """
        delay = 1.0
        try:
            delay = float(response.json().get('retry_after', delay))
        except ValueError:
            header = response.headers.get('Retry-After')
            if header:
                delay = float(header)
        return min(max(delay, 0.0), self.MAX_RETRY_AFTER)
    
    def _parse_scheduled_event(self, item: Dict[str, Any]) -> ScheduledEvent:
        """
        Build a ScheduledEvent from an API object.
        
        Args:
            item: JSON object from the scheduled events endpoint
            
        Returns:
            ScheduledEvent object
        """
        metadata = item.get('entity_metadata') or {}
        
        return ScheduledEvent(
            id=str(item['id']),
            guild_id=str(item.get('guild_id', '')),
            name=item.get('name', ''),
            description=item.get('description'),
            scheduled_start_time=item['scheduled_start_time'],
            scheduled_end_time=item.get('scheduled_end_time'),
            location=metadata.get('location'),
            status=int(item.get('status', 0)),
            entity_type=int(item.get('entity_type', 0))
        )
