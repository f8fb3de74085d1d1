"""Data models for event processing."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Event:
    """Calendar event ready to be encoded."""
    id: str
    created_at: Optional[datetime]
    start: Optional[datetime]
    end: Optional[datetime]
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


@dataclass
class ScheduledEvent:
    """Raw guild scheduled event from the Discord API."""
    id: str
    guild_id: str
    name: str
    description: Optional[str]
    scheduled_start_time: str
    scheduled_end_time: Optional[str]
    location: Optional[str]
    status: int
    entity_type: int


@dataclass
class FeedSettings:
    """Runtime configuration of the feed service."""
    discord_token: str
    discord_api_base: str = 'https://discord.com/api/v10'
    cache_ttl: float = 300.0
    sweep_interval: float = 3600.0
    timeout: float = 30.0
    log_level: str = 'INFO'
