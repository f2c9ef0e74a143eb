"""
Translation between Event and RFC 5545 VCALENDAR/VEVENT data.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from icalendar import Alarm
from icalendar import Calendar as ICalendar
from icalendar import Event as ICalEvent

from switchcal.models import DecodeError
from switchcal.models import Event
from switchcal.models import EventStatus
from switchcal.models import Frequency
from switchcal.models import RecurrenceRule
from switchcal.models import Weekday
from switchcal.models import utcnow

logger = logging.getLogger(__name__)

PRODID = "-//SwitchCal//EN"

_STATUS_FROM_ICAL = {
    "CONFIRMED": EventStatus.CONFIRMED,
    "TENTATIVE": EventStatus.TENTATIVE,
    "CANCELLED": EventStatus.CANCELLED,
}
_STATUS_TO_ICAL = {v: k for k, v in _STATUS_FROM_ICAL.items()}


def _as_datetime(value) -> datetime:
    """Promote a DATE to UTC midnight and a floating DATE-TIME to UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise TypeError(f"not a date value: {value!r}")


def _date_value(component, name: str):
    """Return the raw date/datetime/timedelta of a property, or None if absent or broken."""
    prop = component.get(name)
    if prop is None:
        return None
    try:
        return prop.dt
    except AttributeError:
        logger.debug("Unparseable %s value %r ignored", name, prop)
        return None


def _text(component, name: str) -> str:
    value = component.get(name)
    return str(value) if value is not None else ""


# ---------------------------------------------------------------------------
# Recurrence / reminders
# ---------------------------------------------------------------------------


def _first(recur, key: str):
    values = recur.get(key)
    if not values:
        return None
    return values[0] if isinstance(values, list) else values


def _parse_rrule(component) -> RecurrenceRule | None:
    recur = component.get("RRULE")
    if recur is None:
        return None
    # Several RRULEs are legal but rare; only the first is kept.
    if isinstance(recur, list):
        recur = recur[0]

    freq = _first(recur, "FREQ")
    try:
        frequency = Frequency(str(freq).lower())
    except ValueError:
        logger.debug("Unsupported RRULE frequency %r ignored", freq)
        return None

    until = _first(recur, "UNTIL")
    by_day = []
    for day in recur.get("BYDAY") or []:
        # ordinal prefixes ("1MO", "-1FR") are dropped
        try:
            by_day.append(Weekday(str(day)[-2:].upper()))
        except ValueError:
            continue

    return RecurrenceRule(
        frequency=frequency,
        interval=int(_first(recur, "INTERVAL") or 1),
        count=int(_first(recur, "COUNT") or 0),
        until=_as_datetime(until) if until else None,
        by_day=by_day,
        by_month_day=[int(d) for d in recur.get("BYMONTHDAY") or []],
        by_month=[int(m) for m in recur.get("BYMONTH") or []],
    )


def _rrule_value(rule: RecurrenceRule) -> dict:
    value = {"freq": rule.frequency.value.upper()}
    if rule.interval and rule.interval > 1:
        value["interval"] = rule.interval
    if rule.count:
        value["count"] = rule.count
    elif rule.until:
        value["until"] = rule.until.astimezone(timezone.utc)
    if rule.by_day:
        value["byday"] = [d.value for d in rule.by_day]
    if rule.by_month_day:
        value["bymonthday"] = list(rule.by_month_day)
    if rule.by_month:
        value["bymonth"] = list(rule.by_month)
    return value


def _parse_reminders(component) -> list[int]:
    reminders = []
    for alarm in component.walk("VALARM"):
        trigger = _date_value(alarm, "TRIGGER")
        # absolute triggers have no "minutes before" equivalent
        if isinstance(trigger, timedelta) and trigger <= timedelta(0):
            reminders.append(int(-trigger.total_seconds() // 60))
    return reminders


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def parse_event(data: str | bytes, etag: str | None = None) -> Event:
    """
    Decode the first VEVENT of a calendar object into an Event.

    Decoding is best-effort: a broken date property leaves the field unset
    instead of failing the object. A missing VEVENT or UID raises DecodeError.

    Args:
        data: VCALENDAR (or bare VEVENT) text
        etag: ETag of the enclosing CalDAV object, if known

    Returns:
        Event whose id and uid are both the VEVENT UID
    """
    try:
        cal = ICalendar.from_ical(data)
    except ValueError as e:
        raise DecodeError(f"Invalid iCalendar data: {e}") from e

    vevents = cal.walk("VEVENT")
    if not vevents:
        raise DecodeError("no VEVENT found")
    component = vevents[0]

    uid = _text(component, "UID")
    if not uid:
        raise DecodeError("VEVENT has no UID")
    event = Event(
        id=uid,
        uid=uid,
        title=_text(component, "SUMMARY"),
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        etag=etag or "",
    )

    dtstart = _date_value(component, "DTSTART")
    if isinstance(dtstart, date):
        event.all_day = not isinstance(dtstart, datetime)
        event.start = _as_datetime(dtstart)

    dtend = _date_value(component, "DTEND")
    if isinstance(dtend, date):
        event.end = _as_datetime(dtend)
    elif event.start is not None:
        duration = _date_value(component, "DURATION")
        if isinstance(duration, timedelta):
            event.end = event.start + duration
        elif event.all_day:
            event.end = event.start + timedelta(days=1)
        else:
            event.end = event.start

    created = _date_value(component, "CREATED")
    if isinstance(created, date):
        event.created = _as_datetime(created)
    modified = _date_value(component, "LAST-MODIFIED")
    if isinstance(modified, date):
        event.modified = _as_datetime(modified)

    status = _STATUS_FROM_ICAL.get(_text(component, "STATUS").upper())
    if status is not None:
        event.status = status
        event.cancelled = status == EventStatus.CANCELLED

    event.recurrence = _parse_rrule(component)
    event.reminders = _parse_reminders(component)
    return event


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def event_to_ical(event: Event, now: datetime | None = None) -> ICalendar:
    """
    Build a VCALENDAR holding one VEVENT for the event.

    STATUS follows event.status only; the cancelled flag is not consulted.
    """
    cal = ICalendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    vevent = ICalEvent()
    vevent.add("uid", event.uid)
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)
    if event.location:
        vevent.add("location", event.location)

    if event.all_day:
        vevent.add("dtstart", event.start.date())
        vevent.add("dtend", event.end.date())
    else:
        vevent.add("dtstart", event.start.astimezone(timezone.utc))
        vevent.add("dtend", event.end.astimezone(timezone.utc))

    vevent.add("dtstamp", (now or utcnow()).astimezone(timezone.utc))
    if event.created:
        vevent.add("created", event.created.astimezone(timezone.utc))
    if event.modified:
        vevent.add("last-modified", event.modified.astimezone(timezone.utc))

    status = _STATUS_TO_ICAL.get(event.status)
    if status:
        vevent.add("status", status)

    if event.recurrence:
        vevent.add("rrule", _rrule_value(event.recurrence))

    for minutes in event.reminders:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("description", event.title or "Reminder")
        alarm.add("trigger", timedelta(minutes=-minutes))
        vevent.add_component(alarm)

    cal.add_component(vevent)
    return cal


def serialize_event(event: Event, now: datetime | None = None) -> bytes:
    """Return the iCalendar bytes to upload for the event."""
    return event_to_ical(event, now).to_ical()
