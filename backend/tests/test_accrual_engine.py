"""Tests for MCA accrual rules."""
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from seatime.errors import InvalidStateError
from seatime.models.base import DepartmentEnum, EntryStatusEnum, PropulsionTypeEnum, ServiceTypeEnum
from seatime.modules.accrual_engine import (
    AnchorageContext,
    accrue_entry,
    accrue_period,
    duration_hours,
    is_mca_compliant,
    split_by_calendar_day,
    watchkeeping_days,
)

ENGINE = SimpleNamespace(propulsion_type=PropulsionTypeEnum.ENGINE)
SAIL = SimpleNamespace(propulsion_type=PropulsionTypeEnum.SAIL)
T0 = datetime(2025, 6, 1, 8, 0)


def _entry(start=T0, hours=5.0, is_stationary=False, **kwargs):
    return SimpleNamespace(
        id=1, start_time=start, end_time=start + timedelta(hours=hours),
        is_stationary=is_stationary, **kwargs,
    )


def _confirmed(start=T0, hours=5.0, vessel=ENGINE, **kwargs):
    fields = dict(
        status=EntryStatusEnum.CONFIRMED, duration_hours=hours, sea_days=0,
        watchkeeping_hours=None, additional_watchkeeping_hours=None, yard_days=0,
        department=DepartmentEnum.DECK, vessel=vessel,
    )
    fields.update(kwargs)
    return SimpleNamespace(start_time=start, end_time=start + timedelta(hours=hours), **fields)


class TestPrimitives:
    @pytest.mark.parametrize("hours,expected", [(0, 0), (4, 1), (4.01, 2), (8, 2), (3.99, 1), (None, 0)])
    def test_watchkeeping_days(self, hours, expected):
        assert watchkeeping_days(hours) == expected

    def test_duration_rounds_to_two_places(self):
        assert duration_hours(T0, T0 + timedelta(hours=5, seconds=20)) == 5.01

    def test_negative_duration_rejected(self):
        with pytest.raises(InvalidStateError):
            duration_hours(T0, T0 - timedelta(minutes=1))

    def test_mca_threshold(self):
        assert is_mca_compliant(4.0)
        assert not is_mca_compliant(3.99)

    def test_split_across_midnight(self):
        buckets = split_by_calendar_day(datetime(2025, 6, 1, 20, 0), datetime(2025, 6, 2, 6, 30))
        assert buckets == {date(2025, 6, 1): 4.0, date(2025, 6, 2): 6.5}

    def test_split_empty_interval(self):
        assert split_by_calendar_day(T0, T0) == {}


class TestActualSeaService:
    def test_five_hours_one_day(self):
        result = accrue_entry(_entry(hours=5), ENGINE, DepartmentEnum.DECK, ServiceTypeEnum.ACTUAL_SEA_SERVICE)
        assert result.sea_days == 1
        assert result.mca_compliant is True
        assert result.needs_review is False

    def test_under_four_hours_flagged_not_counted(self):
        result = accrue_entry(_entry(hours=3), ENGINE, "deck", "actual_sea_service")
        assert result.sea_days == 0
        assert result.mca_compliant is False
        assert result.needs_review is True
        assert result.reasons

    def test_each_day_needs_four_hours_of_its_own(self):
        # 20:00 → 06:30 next day: 4 h on day one, 6.5 h on day two
        entry = _entry(start=datetime(2025, 6, 1, 20, 0), hours=10.5)
        result = accrue_entry(entry, ENGINE, "deck", "actual_sea_service")
        assert result.sea_days == 2

        # 22:00 → 03:00: compliant overall, but neither day reaches four hours
        entry = _entry(start=datetime(2025, 6, 1, 22, 0), hours=5)
        assert accrue_entry(entry, ENGINE, "deck", "actual_sea_service").sea_days == 0

    def test_sail_counts_every_day_under_way(self):
        entry = _entry(start=datetime(2025, 6, 1, 22, 0), hours=5)
        result = accrue_entry(entry, SAIL, "deck", "actual_sea_service")
        assert result.sea_days == 2

    def test_engineering_accrues_sea_days_too(self):
        assert accrue_entry(_entry(hours=6), ENGINE, "engineering", "actual_sea_service").sea_days == 1

    def test_standby_earns_no_sea_days(self):
        result = accrue_entry(_entry(hours=8), ENGINE, "deck", "standby_service")
        assert result.sea_days == 0

    def test_open_entry_rejected(self):
        entry = SimpleNamespace(id=3, start_time=T0, end_time=None, is_stationary=False)
        with pytest.raises(InvalidStateError):
            accrue_entry(entry, ENGINE, "deck", "actual_sea_service")


class TestStationaryPeriods:
    def test_anchorage_without_context_not_counted(self):
        result = accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "deck", "actual_sea_service")
        assert result.sea_days == 0
        assert any("Stationary" in r for r in result.reasons)

    def test_anchorage_meeting_all_conditions_counts(self):
        ctx = AnchorageContext(
            part_of_active_passage=True, operationally_necessary=True,
            preceding_voyage_hours=10.0, is_passage_end=False,
        )
        result = accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "deck", "actual_sea_service", anchorage=ctx)
        assert result.sea_days == 1

    @pytest.mark.parametrize("override", [
        {"part_of_active_passage": False},
        {"operationally_necessary": False},
        {"preceding_voyage_hours": 5.0},
        {"is_passage_end": True},
    ])
    def test_any_failed_condition_excludes(self, override):
        fields = dict(part_of_active_passage=True, operationally_necessary=True,
                      preceding_voyage_hours=10.0, is_passage_end=False)
        fields.update(override)
        result = accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "deck", "actual_sea_service",
                              anchorage=AnchorageContext(**fields))
        assert result.sea_days == 0


class TestWatchkeeping:
    def test_four_hour_block_is_one_day(self):
        result = accrue_entry(_entry(hours=4), ENGINE, "deck", "watchkeeping_service", watchkeeping_hours=4.0)
        assert result.watchkeeping_days == 1
        assert result.watchkeeping_hours == 4.0

    def test_defaults_to_entry_duration(self):
        result = accrue_entry(_entry(hours=9), ENGINE, "deck", "watchkeeping_service")
        assert result.watchkeeping_hours == 9.0
        assert result.watchkeeping_days == 3

    def test_actual_sea_service_has_no_default_watchkeeping(self):
        result = accrue_entry(_entry(hours=9), ENGINE, "deck", "actual_sea_service")
        assert result.watchkeeping_days == 0
        assert result.watchkeeping_hours is None

    def test_additional_watchkeeping_engineering_at_anchor(self):
        result = accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "engineering", "service_in_port",
                              additional_watchkeeping_hours=6.0)
        assert result.additional_watchkeeping_days == 2

    def test_additional_watchkeeping_not_on_a_sea_day(self):
        ctx = AnchorageContext(
            part_of_active_passage=True, operationally_necessary=True,
            preceding_voyage_hours=10.0, is_passage_end=False,
        )
        with pytest.raises(InvalidStateError, match="actual sea days"):
            accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "engineering", "actual_sea_service",
                         anchorage=ctx, additional_watchkeeping_hours=6.0)

    def test_additional_watchkeeping_limited_to_non_sea_days(self):
        ctx = AnchorageContext(
            part_of_active_passage=True, operationally_necessary=True,
            preceding_voyage_hours=30.0, is_passage_end=False,
        )
        # 3 h on 06-01 (no sea day), 7 h on 06-02 (sea day)
        entry = _entry(start=datetime(2025, 6, 1, 21, 0), hours=10, is_stationary=True)
        result = accrue_entry(entry, ENGINE, "engineering", "actual_sea_service",
                              anchorage=ctx, additional_watchkeeping_hours=10.0)
        assert result.sea_dates == [date(2025, 6, 2)]
        assert result.additional_watchkeeping_hours == 3.0
        assert result.additional_watchkeeping_days == 1
        assert any("limited" in r for r in result.reasons)

    def test_additional_watchkeeping_rejected_for_deck(self):
        with pytest.raises(InvalidStateError):
            accrue_entry(_entry(hours=6, is_stationary=True), ENGINE, "deck", "service_in_port",
                         additional_watchkeeping_hours=6.0)

    def test_additional_watchkeeping_rejected_under_way(self):
        with pytest.raises(InvalidStateError):
            accrue_entry(_entry(hours=6), ENGINE, "engineering", "actual_sea_service",
                         additional_watchkeeping_hours=6.0)


class TestYardService:
    def test_yard_days_are_calendar_days(self):
        entry = _entry(start=datetime(2025, 6, 1, 8, 0), hours=24 * 3)
        result = accrue_entry(entry, ENGINE, "engineering", "yard_service")
        assert result.yard_days == 4
        assert result.requires_documentation is False

    def test_routine_maintenance_excluded(self):
        result = accrue_entry(_entry(hours=8), ENGINE, "deck", "yard_service", routine_maintenance=True)
        assert result.yard_days == 0
        assert any("maintenance" in r for r in result.reasons)

    def test_beyond_cap_requires_documentation(self):
        result = accrue_entry(_entry(hours=8), ENGINE, "deck", "yard_service", prior_yard_days=90)
        assert result.yard_days == 1
        assert result.requires_documentation is True


class TestPeriodAccrual:
    def test_watchkeeping_block_on_one_date(self):
        entry = _confirmed(hours=4, watchkeeping_hours=4.0, sea_days=1)
        result = accrue_period([entry])
        assert result.watchkeeping_days == 1
        assert result.sea_dates == [date(2025, 6, 1)]

    def test_same_date_counted_once(self):
        morning = _confirmed(start=datetime(2025, 6, 1, 6, 0), hours=5, sea_days=1)
        evening = _confirmed(start=datetime(2025, 6, 1, 14, 0), hours=5, sea_days=1)
        assert accrue_period([morning, evening]).actual_sea_days == 1

    def test_deck_watchkeeping_capped_at_sea_days(self):
        entry = _confirmed(hours=5, sea_days=1, watchkeeping_hours=20.0)
        assert accrue_period([entry]).watchkeeping_days == 1

    def test_engineering_watchkeeping_not_capped(self):
        entry = _confirmed(hours=5, sea_days=1, watchkeeping_hours=20.0, department=DepartmentEnum.ENGINEERING)
        assert accrue_period([entry]).watchkeeping_days == 5

    def test_additional_watchkeeping_excludes_sea_dates(self):
        at_sea = _confirmed(start=datetime(2025, 6, 1, 0, 0), hours=6, sea_days=1)
        at_anchor_same_day = _confirmed(
            start=datetime(2025, 6, 1, 12, 0), hours=6, additional_watchkeeping_hours=6.0,
            department=DepartmentEnum.ENGINEERING,
        )
        at_anchor_next_day = _confirmed(
            start=datetime(2025, 6, 2, 12, 0), hours=8, additional_watchkeeping_hours=8.0,
            department=DepartmentEnum.ENGINEERING,
        )
        result = accrue_period([at_sea, at_anchor_same_day, at_anchor_next_day])
        assert result.actual_sea_days == 1
        assert result.additional_watchkeeping_days == 2

    def test_yard_days_capped(self):
        entries = [_confirmed(hours=8, yard_days=50), _confirmed(start=T0 + timedelta(days=60), hours=8, yard_days=50)]
        result = accrue_period(entries)
        assert result.yard_days == 90
        assert result.yard_days_requiring_documentation == 10

    def test_pending_and_open_entries_ignored(self):
        pending = _confirmed(hours=5, sea_days=1, status=EntryStatusEnum.PENDING)
        open_entry = _confirmed(hours=5, sea_days=1)
        open_entry.end_time = None
        result = accrue_period([pending, open_entry])
        assert result.entry_count == 0
        assert result.actual_sea_days == 0
