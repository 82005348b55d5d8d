"""Tests for the business-day calendar (Portugal, DST-safe)."""

from datetime import date, datetime, time, timezone

import pytest

from ritmo.utils.business_days import (
    CalendarConfigError,
    HolidayCalendar,
    add_business_days,
    is_business_day,
    is_within_send_window,
    next_send_time,
    validate_calendar_settings,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestIsBusinessDay:
    def test_weekday_is_business_day(self):
        assert is_business_day(date(2024, 1, 2)) is True

    def test_weekend_is_not(self):
        assert is_business_day(date(2024, 1, 6)) is False
        assert is_business_day(date(2024, 1, 7)) is False

    @pytest.mark.parametrize(
        "day",
        [
            date(2024, 1, 1),  # Ano Novo
            date(2024, 3, 29),  # Good Friday (Easter-relative)
            date(2024, 4, 25),  # Liberdade
            date(2024, 5, 30),  # Corpus Christi (Easter-relative)
            date(2023, 10, 5),  # Implantação da República
            date(2024, 12, 25),
        ],
    )
    def test_portuguese_holidays(self, day):
        assert is_business_day(day) is False

    def test_datetime_uses_local_date(self):
        # Friday 12:00 UTC is already Saturday in Auckland
        friday_noon = _utc(2024, 1, 5, 12, 0)
        assert is_business_day(friday_noon, "Europe/Lisbon") is True
        assert is_business_day(friday_noon, "Pacific/Auckland") is False

    def test_extra_fixed_holidays(self):
        calendar = HolidayCalendar(extra_fixed=((6, 13),))  # Santo António (Lisbon)
        assert is_business_day(date(2024, 6, 13)) is True
        assert is_business_day(date(2024, 6, 13), calendar=calendar) is False


class TestAddBusinessDays:
    def test_cadence_offsets_skip_weekend(self):
        sent_at = _utc(2024, 1, 2, 10, 0)  # Tuesday

        assert add_business_days(sent_at, 1) == _utc(2024, 1, 3, 9, 0)
        assert add_business_days(sent_at, 3) == _utc(2024, 1, 5, 9, 0)
        assert add_business_days(sent_at, 7) == _utc(2024, 1, 11, 9, 0)
        assert add_business_days(sent_at, 14) == _utc(2024, 1, 22, 9, 0)

    def test_skips_holiday_and_keeps_local_anchor_across_dst(self):
        # Wed 27 Mar 2024 + 2: Thu 28 (1), Good Friday skipped, weekend, Mon 1 Apr (2).
        # DST started 31 Mar, so 09:00 Lisbon is 08:00 UTC.
        result = add_business_days(_utc(2024, 3, 27, 10, 0), 2, "Europe/Lisbon")
        assert result == _utc(2024, 4, 1, 8, 0)

    def test_zero_days_rolls_forward_to_business_day(self):
        saturday = _utc(2024, 1, 6, 15, 0)
        assert add_business_days(saturday, 0) == _utc(2024, 1, 8, 9, 0)
        tuesday = _utc(2024, 1, 2, 15, 0)
        assert add_business_days(tuesday, 0) == _utc(2024, 1, 2, 9, 0)

    def test_custom_timezone_and_anchor(self):
        result = add_business_days(
            _utc(2024, 1, 2, 10, 0), 1, "America/New_York", at=time(10, 30)
        )
        assert result == _utc(2024, 1, 3, 15, 30)

    def test_start_late_evening_uses_local_date(self):
        # 23:30 UTC on Friday is still Friday in Lisbon (winter, UTC+0)
        assert add_business_days(_utc(2024, 1, 5, 23, 30), 1) == _utc(2024, 1, 8, 9, 0)

    def test_negative_days_rejected(self):
        with pytest.raises(ValueError):
            add_business_days(_utc(2024, 1, 2), -1)

    def test_unknown_timezone_raises_config_error(self):
        with pytest.raises(CalendarConfigError):
            add_business_days(_utc(2024, 1, 2), 1, "Mars/Olympus_Mons")


class TestSendWindow:
    def test_inside_window(self):
        assert is_within_send_window(_utc(2024, 1, 3, 10, 0), "09:00", "18:00", "Europe/Lisbon")

    def test_outside_window_and_weekend(self):
        assert not is_within_send_window(_utc(2024, 1, 3, 18, 30), "09:00", "18:00", "Europe/Lisbon")
        assert not is_within_send_window(_utc(2024, 1, 6, 10, 0), "09:00", "18:00", "Europe/Lisbon")

    def test_next_send_time_same_day_before_window(self):
        assert next_send_time(_utc(2024, 1, 3, 7, 0), "09:00", "18:00", "Europe/Lisbon") == _utc(
            2024, 1, 3, 9, 0
        )

    def test_next_send_time_after_friday_window(self):
        assert next_send_time(_utc(2024, 1, 5, 19, 0), "09:00", "18:00", "Europe/Lisbon") == _utc(
            2024, 1, 8, 9, 0
        )

    def test_next_send_time_inside_window_is_now(self):
        now = _utc(2024, 1, 3, 11, 15)
        assert next_send_time(now, "09:00", "18:00", "Europe/Lisbon") == now


class TestValidateCalendarSettings:
    def test_defaults_are_valid(self, monkeypatch):
        from ritmo.core.config import settings

        monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "Europe/Lisbon")
        monkeypatch.setattr(settings, "HOLIDAY_COUNTRY", "PT")
        monkeypatch.setattr(settings, "EXTRA_HOLIDAYS", "06-13")

        calendar = validate_calendar_settings()
        assert calendar.extra_fixed == ((6, 13),)

    @pytest.mark.parametrize(
        "key,value",
        [
            ("DEFAULT_TIMEZONE", "Nowhere/Invalid"),
            ("HOLIDAY_COUNTRY", "XX"),
            ("EXTRA_HOLIDAYS", "13-45"),
            ("SEND_WINDOW_START", "9am"),
            ("SEND_WINDOW_END", "08:00"),
        ],
    )
    def test_misconfiguration_is_fatal(self, monkeypatch, key, value):
        from ritmo.core.config import settings

        monkeypatch.setattr(settings, key, value)
        with pytest.raises(CalendarConfigError):
            validate_calendar_settings()
