"""iCalendar encoding of calendar events."""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from icalendar import Calendar
from icalendar import Event as ICalEvent
from icalendar.prop import vDDDTypes

from processor.exceptions import ValidationError
from processor.models import Event

logger = logging.getLogger(__name__)

PRODUCT_ID = '-//discord-ical-feed//discord-ical-feed'
VERSION = '2.0'

# Stamp of the placeholder event written into empty calendars. Clients
# reject a VCALENDAR without any component, so one event dated at the
# earliest representable instant is emitted instead.
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)

REQUIRED_TIMESTAMPS = (
    ('created_at', 'creation time'),
    ('start', 'start time'),
    ('end', 'end time'),
)


def validate_event(index: int, event: Event) -> None:
    """
    Check that an event carries every required field.

    Args:
        index: Position of the event in the batch, used in the error
        event: Event to check

    Raises:
        ValidationError: Naming the first missing field, or the first
            timestamp without a time zone
    """
    if not event.id:
        raise ValidationError(index, 'ID')
    for attribute, field in REQUIRED_TIMESTAMPS:
        value = getattr(event, attribute)
        if value is None:
            raise ValidationError(index, field)
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValidationError(index, f"time zone for {field}")


def zone_name(value: datetime) -> Optional[str]:
    """Return the IANA name of the zone of a datetime, if it has one."""
    tzinfo = value.tzinfo
    return getattr(tzinfo, 'key', None) or getattr(tzinfo, 'zone', None)


def set_datetime(component: ICalEvent, name: str, value: datetime) -> None:
    """
    Set a date-time property in the time zone the value carries.

    Values in a named zone keep it as TZID. Values with only a fixed UTC
    offset have no zone identifier to reference and are written in UTC.
    Component.add converts DTSTAMP to UTC, so the property is assigned
    directly to keep the TZID of zoned values.
    """
    if zone_name(value) is None:
        value = value.astimezone(timezone.utc)
    component[name] = vDDDTypes(value)


def build_calendar(events: Iterable[Event]) -> Calendar:
    """
    Build the VCALENDAR component for a list of events.

    Args:
        events: Events in feed order

    Returns:
        icalendar Calendar with one VEVENT per event, or a single
        placeholder VEVENT when there are no events

    Raises:
        ValidationError: If any event is missing a required field
    """
    calendar = Calendar()
    calendar.add('prodid', PRODUCT_ID)
    calendar.add('version', VERSION)

    for index, event in enumerate(events):
        validate_event(index, event)

        component = ICalEvent()
        component.add('uid', event.id)
        set_datetime(component, 'dtstamp', event.created_at)
        set_datetime(component, 'dtstart', event.start)
        set_datetime(component, 'dtend', event.end)

        if event.summary:
            component.add('summary', event.summary)
        if event.description:
            component.add('description', event.description)
        if event.location:
            component.add('location', event.location)

        calendar.add_component(component)

    if not calendar.subcomponents:
        placeholder = ICalEvent()
        placeholder.add('uid', '')
        for name in ('dtstamp', 'dtstart', 'dtend'):
            set_datetime(placeholder, name, EARLIEST)
        calendar.add_component(placeholder)

    return calendar


def encode_calendar(events: Iterable[Event]) -> bytes:
    """
    Encode events as an iCalendar document.

    Text values are escaped and lines folded per RFC 5545; lines end
    with CRLF. Date-times keep their own time zone: UTC values get a
    "Z" suffix, other zones a TZID parameter.

    Args:
        events: Events in feed order

    Returns:
        The UTF-8 encoded document

    Raises:
        ValidationError: If any event is missing a required field
    """
    calendar = build_calendar(events)
    document = calendar.to_ical()
    logger.debug(f"Encoded calendar with {len(calendar.subcomponents)} events")
    return document
