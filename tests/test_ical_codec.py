"""
Tests for the iCalendar codec: decoding rules, the encode format, and
encode→decode round trips of the fields the store keeps.
"""

from datetime import timedelta

import pytest

from switchcal.ical_codec import event_to_ical
from switchcal.ical_codec import parse_event
from switchcal.ical_codec import serialize_event
from switchcal.models import DecodeError
from switchcal.models import Event
from switchcal.models import EventStatus
from switchcal.models import Frequency
from switchcal.models import RecurrenceRule
from switchcal.models import Weekday
from tests.conftest import make_vcalendar
from tests.conftest import utc


def _event(**kwargs) -> Event:
    defaults = {
        "id": "uid-1",
        "uid": "uid-1",
        "title": "Planning",
        "description": "Quarterly planning",
        "location": "Room 4",
        "start": utc(2024, 6, 10, 9),
        "end": utc(2024, 6, 10, 10, 30),
    }
    defaults.update(kwargs)
    return Event(**defaults)


class TestDecode:
    def test_basic_fields(self):
        event = parse_event(make_vcalendar("abc@example.com", "Standup"), etag='"e1"')

        assert event.id == "abc@example.com"
        assert event.uid == "abc@example.com"
        assert event.title == "Standup"
        assert event.start == utc(2024, 6, 10, 9)
        assert event.end == utc(2024, 6, 10, 10)
        assert event.all_day is False
        assert event.etag == '"e1"'
        assert event.status == EventStatus.CONFIRMED
        assert event.cancelled is False

    def test_bare_vevent_is_accepted(self):
        data = (
            "BEGIN:VEVENT\r\n"
            "UID:bare-1\r\n"
            "SUMMARY:Bare\r\n"
            "DTSTART:20240610T090000Z\r\n"
            "DTEND:20240610T100000Z\r\n"
            "END:VEVENT\r\n"
        )
        assert parse_event(data).title == "Bare"

    def test_bytes_input(self):
        assert parse_event(make_vcalendar("b-1").encode("utf-8")).uid == "b-1"

    def test_date_values_mark_all_day(self):
        data = make_vcalendar(
            "allday-1",
            dtstart="DTSTART;VALUE=DATE:20240610",
            dtend="DTEND;VALUE=DATE:20240611",
        )
        event = parse_event(data)

        assert event.all_day is True
        assert event.start == utc(2024, 6, 10)
        assert event.end == utc(2024, 6, 11)

    @pytest.mark.parametrize(
        "status, expected, cancelled",
        [
            ("CONFIRMED", EventStatus.CONFIRMED, False),
            ("TENTATIVE", EventStatus.TENTATIVE, False),
            ("CANCELLED", EventStatus.CANCELLED, True),
        ],
    )
    def test_status_mapping(self, status, expected, cancelled):
        event = parse_event(make_vcalendar("s-1", extra=(f"STATUS:{status}",)))

        assert event.status == expected
        assert event.cancelled is cancelled

    def test_no_vevent_is_a_decode_error(self):
        data = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Test//EN\r\nEND:VCALENDAR\r\n"
        with pytest.raises(DecodeError):
            parse_event(data)

    def test_missing_uid_is_a_decode_error(self):
        data = (
            "BEGIN:VCALENDAR\r\n"
            "VERSION:2.0\r\n"
            "PRODID:-//Test//EN\r\n"
            "BEGIN:VEVENT\r\n"
            "SUMMARY:Anonymous\r\n"
            "DTSTART:20240610T090000Z\r\n"
            "DTEND:20240610T100000Z\r\n"
            "END:VEVENT\r\n"
            "END:VCALENDAR\r\n"
        )
        with pytest.raises(DecodeError, match="UID"):
            parse_event(data)

    def test_garbage_is_a_decode_error(self):
        with pytest.raises(DecodeError):
            parse_event("this is not a calendar")

    def test_broken_date_is_left_unset(self):
        event = parse_event(make_vcalendar("broken-1", "Still here", dtstart="DTSTART:notadate", dtend=None))

        assert event.title == "Still here"
        assert event.start is None
        assert event.end is None

    def test_missing_dtend_timed(self):
        event = parse_event(make_vcalendar("m-1", dtend=None))
        assert event.end == event.start

    def test_missing_dtend_all_day(self):
        event = parse_event(make_vcalendar("m-2", dtstart="DTSTART;VALUE=DATE:20240610", dtend=None))
        assert event.end == utc(2024, 6, 11)

    def test_duration_instead_of_dtend(self):
        event = parse_event(make_vcalendar("m-3", dtend="DURATION:PT30M"))
        assert event.end == utc(2024, 6, 10, 9, 30)

    def test_floating_time_is_utc(self):
        event = parse_event(make_vcalendar("f-1", dtstart="DTSTART:20240610T090000", dtend=None))
        assert event.start == utc(2024, 6, 10, 9)

    def test_tzid_is_honoured(self):
        event = parse_event(
            make_vcalendar(
                "tz-1",
                dtstart="DTSTART;TZID=Europe/Berlin:20240610T090000",
                dtend="DTEND;TZID=Europe/Berlin:20240610T100000",
            )
        )
        assert event.start == utc(2024, 6, 10, 7)
        assert event.end == utc(2024, 6, 10, 8)

    def test_created_and_last_modified(self):
        event = parse_event(
            make_vcalendar("c-1", extra=("CREATED:20240501T080000Z", "LAST-MODIFIED:20240502T080000Z"))
        )
        assert event.created == utc(2024, 5, 1, 8)
        assert event.modified == utc(2024, 5, 2, 8)

    def test_rrule_and_alarm(self):
        data = make_vcalendar(
            "r-1",
            extra=(
                "RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=10;BYDAY=MO,WE",
                "BEGIN:VALARM",
                "ACTION:DISPLAY",
                "DESCRIPTION:Reminder",
                "TRIGGER:-PT15M",
                "END:VALARM",
            ),
        )
        event = parse_event(data)

        assert event.recurrence == RecurrenceRule(
            frequency=Frequency.WEEKLY,
            interval=2,
            count=10,
            by_day=[Weekday.MONDAY, Weekday.WEDNESDAY],
        )
        assert event.reminders == [15]


class TestEncode:
    def test_calendar_envelope(self):
        data = serialize_event(_event(), now=utc(2024, 6, 1, 12))

        assert b"BEGIN:VCALENDAR" in data
        assert b"VERSION:2.0" in data
        assert b"PRODID:-//SwitchCal//EN" in data
        assert b"UID:uid-1" in data
        assert b"DTSTAMP:20240601T120000Z" in data

    def test_single_vevent(self):
        cal = event_to_ical(_event())
        assert len(cal.walk("VEVENT")) == 1

    def test_all_day_uses_date_values(self):
        data = serialize_event(_event(all_day=True, start=utc(2024, 6, 10), end=utc(2024, 6, 11)))

        assert b"DTSTART;VALUE=DATE:20240610" in data
        assert b"DTEND;VALUE=DATE:20240611" in data

    def test_timed_uses_utc_datetimes(self):
        data = serialize_event(_event())

        assert b"DTSTART:20240610T090000Z" in data
        assert b"DTEND:20240610T103000Z" in data

    def test_optional_fields_omitted_when_empty(self):
        data = serialize_event(_event(description="", location=""))

        assert b"DESCRIPTION" not in data
        assert b"LOCATION" not in data

    def test_status_follows_enum_not_flag(self):
        data = serialize_event(_event(status=EventStatus.CONFIRMED, cancelled=True))

        assert b"STATUS:CONFIRMED" in data
        assert b"CANCELLED" not in data

    def test_cancelled_status(self):
        assert b"STATUS:CANCELLED" in serialize_event(_event(status=EventStatus.CANCELLED))


class TestRoundTrip:
    def test_timed_event(self):
        original = _event()
        decoded = parse_event(serialize_event(original))

        assert decoded.title == original.title
        assert decoded.description == original.description
        assert decoded.location == original.location
        assert decoded.all_day is False
        assert decoded.start == original.start
        assert decoded.end == original.end

    def test_sub_second_precision_is_dropped(self):
        original = _event(start=utc(2024, 6, 10, 9) + timedelta(microseconds=500))
        decoded = parse_event(serialize_event(original))

        assert decoded.start == utc(2024, 6, 10, 9)

    def test_all_day_event(self):
        original = _event(all_day=True, start=utc(2024, 6, 10), end=utc(2024, 6, 12))
        decoded = parse_event(serialize_event(original))

        assert decoded.all_day is True
        assert decoded.start == utc(2024, 6, 10)
        assert decoded.end == utc(2024, 6, 12)

    def test_recurrence_reminders_and_timestamps(self):
        rule = RecurrenceRule(
            frequency=Frequency.MONTHLY,
            until=utc(2024, 12, 31, 23, 59),
            by_month_day=[1, 15],
        )
        original = _event(
            recurrence=rule,
            reminders=[10, 1440],
            created=utc(2024, 5, 1, 8),
            modified=utc(2024, 5, 2, 8),
        )
        decoded = parse_event(serialize_event(original))

        assert decoded.recurrence == rule
        assert sorted(decoded.reminders) == [10, 1440]
        assert decoded.created == original.created
        assert decoded.modified == original.modified
