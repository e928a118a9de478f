"""Tests for the polling scheduler: leasing, cadence, failure handling and isolation."""
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from seatime.errors import AuthenticationError, LeaseHeldError, ProviderError, TransientProviderError
from seatime.models.ais_check import AISCheck
from seatime.models.ais_debug_log import AISDebugLog
from seatime.models.base import EntryStatusEnum, MovementEnum, PropulsionTypeEnum, TaskTypeEnum
from seatime.models.scheduled_task import ScheduledTask
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.models.vessel import Vessel
from seatime.modules import scheduler
from seatime.modules.entry_repository import TaskStore
from seatime.modules.position_provider import FetchOutcome, PositionSnapshot, ProviderCall
from seatime.modules.sea_time_tracker import Effect
from seatime.modules.vessel_registry import activate_vessel


class FakeProvider:
    """Returns a fix (or an error) per MMSI, stamped with the poll time."""

    def __init__(self, fixes=None, errors=None):
        self.fixes = fixes or {}
        self.errors = errors or {}
        self.calls = []

    def fetch_position(self, vessel, now=None):
        self.calls.append(vessel.mmsi)
        error = self.errors.get(vessel.mmsi)
        if error is not None and not isinstance(error, ProviderError):
            raise error
        call = ProviderCall(
            api_url=f"https://mst.test/vessel?mmsi={vessel.mmsi}&response=simple",
            request_time=now,
            response_status="200" if error is None else "503",
            authentication_status="failed" if isinstance(error, AuthenticationError) else "authenticated",
        )
        if error is not None:
            call.error_message = str(error)
            return FetchOutcome(call=call, error=error)
        speed, lat, lon = self.fixes.get(vessel.mmsi, (8.0, 50.80, -1.10))
        return FetchOutcome(call=call, snapshot=PositionSnapshot(
            vessel_id=vessel.id, timestamp=now, latitude=lat, longitude=lon, speed_knots=speed,
        ))


def _tracked_vessel(db, mmsi, owner_id, t0):
    v = Vessel(owner_id=owner_id, mmsi=mmsi, name=f"VESSEL {mmsi}", propulsion_type=PropulsionTypeEnum.ENGINE)
    db.add(v)
    db.commit()
    activate_vessel(db, v.id, now=t0)
    return v


def _task(db, vessel):
    db.expire_all()
    return db.query(ScheduledTask).filter(ScheduledTask.vessel_id == vessel.id).one()


def _tick(session_factory, now, provider):
    return scheduler.tick(now=now, provider=provider, session_factory=session_factory, max_workers=1)


class TestCadence:
    def test_voyage_detected_across_ticks(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)

        result = _tick(session_factory, t0, FakeProvider({"235000001": (8.0, 50.80, -1.10)}))
        assert (result.due, result.claimed, result.succeeded, result.failed) == (1, 1, 1, 0)
        task = _task(db, vessel)
        assert task.last_run == t0
        assert task.next_run == t0 + timedelta(hours=2)

        # Not due yet
        assert _tick(session_factory, t0 + timedelta(hours=1), FakeProvider()).due == 0

        _tick(session_factory, t0 + timedelta(hours=5), FakeProvider({"235000001": (0.2, 50.95, -1.40)}))

        entry = db.query(SeaTimeEntry).one()
        assert entry.start_time == t0
        assert entry.end_time == t0 + timedelta(hours=5)
        assert entry.duration_hours == 5.0
        assert entry.status == EntryStatusEnum.PENDING
        assert entry.mca_compliant is True
        assert db.query(AISCheck).count() == 2
        assert db.query(AISDebugLog).count() == 2

    def test_second_tick_with_same_fix_changes_nothing(self, db, session_factory, t0):
        _tracked_vessel(db, "235000001", "owner-1", t0)
        fix = {"235000001": (8.0, 50.80, -1.10)}

        _tick(session_factory, t0, FakeProvider(fix))
        result = _tick(session_factory, t0 + timedelta(hours=2), FakeProvider(fix))
        assert result.succeeded == 1

        db.expire_all()
        entry = db.query(SeaTimeEntry).one()
        assert entry.start_time == t0
        assert entry.end_time is None

    def test_no_due_tasks(self, session_factory, t0):
        result = _tick(session_factory, t0, FakeProvider())
        assert (result.due, result.claimed) == (0, 0)


class TestFailures:
    def test_transient_failure_does_not_advance(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        provider = FakeProvider(errors={"235000001": TransientProviderError("HTTP 503", status_code=503)})

        result = _tick(session_factory, t0, provider)

        assert (result.succeeded, result.failed) == (0, 1)
        task = _task(db, vessel)
        assert task.next_run == t0
        assert task.last_run is None
        assert task.consecutive_failures == 1
        assert "503" in task.last_error
        assert task.lease_owner is None
        assert db.query(SeaTimeEntry).count() == 0
        assert db.query(AISCheck).count() == 0
        # Diagnostic row is still written
        assert db.query(AISDebugLog).one().response_status == "503"

    def test_retried_on_next_tick(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        _tick(session_factory, t0, FakeProvider(errors={"235000001": TransientProviderError("timeout", kind="timeout")}))

        result = _tick(session_factory, t0 + timedelta(minutes=1), FakeProvider())

        assert result.succeeded == 1
        task = _task(db, vessel)
        assert task.consecutive_failures == 0
        assert task.last_error is None
        assert task.next_run == t0 + timedelta(minutes=1, hours=2)
        assert db.query(SeaTimeEntry).count() == 1

    def test_authentication_failure_keeps_task_scheduled(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        _tick(session_factory, t0, FakeProvider(errors={"235000001": AuthenticationError("HTTP 401", status_code=401)}))

        task = _task(db, vessel)
        assert task.is_active is True
        assert task.next_run == t0
        assert db.query(AISDebugLog).one().authentication_status == "failed"

    def test_one_failing_vessel_does_not_stop_others(self, db, session_factory, t0):
        broken = _tracked_vessel(db, "235000001", "owner-1", t0)
        healthy = _tracked_vessel(db, "235000002", "owner-2", t0)
        provider = FakeProvider(errors={"235000001": RuntimeError("parser exploded")})

        result = _tick(session_factory, t0, provider)

        assert (result.claimed, result.succeeded, result.failed) == (2, 1, 1)
        assert "parser exploded" in result.errors[_task(db, broken).id]
        assert _task(db, healthy).next_run == t0 + timedelta(hours=2)
        assert _task(db, broken).next_run == t0


class TestLeasing:
    def test_one_task_per_vessel_per_tick(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        db.add(ScheduledTask(vessel_id=vessel.id, task_type=TaskTypeEnum.AIS_CHECK, interval_hours=2.0,
                             next_run=t0, is_active=True))
        db.commit()
        provider = FakeProvider()

        result = _tick(session_factory, t0, provider)

        assert (result.due, result.claimed, result.skipped) == (2, 1, 1)
        assert provider.calls == ["235000001"]

    def test_leased_task_not_picked_up_until_expiry(self, db, session_factory, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        task = _task(db, vessel)
        assert TaskStore(db).claim(task, t0, owner="other-process") is True

        assert _tick(session_factory, t0 + timedelta(minutes=5), FakeProvider()).due == 0

        # Crashed worker: the lease runs out and the task is due again
        result = _tick(session_factory, t0 + timedelta(minutes=16), FakeProvider())
        assert result.succeeded == 1


class TestRunVesselCheck:
    def test_stale_fix_suppresses_close(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        scheduler.run_vessel_check(db, vessel, FakeProvider({"235000001": (8.0, 50.80, -1.10)}), now=t0)

        result = scheduler.run_vessel_check(
            db, vessel, FakeProvider({"235000001": (0.0, 50.80, -1.10)}), now=t0 + timedelta(hours=5),
        )

        assert result.stale is True
        assert result.effect == Effect.NONE
        assert result.movement == MovementEnum.STATIONARY
        assert db.query(SeaTimeEntry).one().end_time is None

    def test_opens_entry(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        result = scheduler.run_vessel_check(db, vessel, FakeProvider(), now=t0)
        assert result.effect == Effect.OPEN
        assert result.entry_id == db.query(SeaTimeEntry).one().id


class TestManualCheck:
    def test_refused_while_scheduler_holds_lease(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        assert TaskStore(db).claim(_task(db, vessel), t0, owner="worker-A") is True
        provider = FakeProvider()

        with pytest.raises(LeaseHeldError, match="worker-A"):
            scheduler.run_manual_check(db, vessel, provider, now=t0 + timedelta(minutes=1))

        assert provider.calls == []
        assert db.query(SeaTimeEntry).count() == 0
        assert _task(db, vessel).lease_owner == "worker-A"

    def test_runs_under_lease_and_keeps_schedule(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        TaskStore(db).mark_run(_task(db, vessel).id, t0, t0 + timedelta(hours=2))
        now = t0 + timedelta(minutes=30)

        result = scheduler.run_manual_check(db, vessel, FakeProvider(), now=now)

        assert result.effect == Effect.OPEN
        task = _task(db, vessel)
        assert task.lease_owner is None
        assert task.last_run == now
        assert task.next_run == t0 + timedelta(hours=2)

    def test_expired_lease_can_be_taken(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        TaskStore(db).claim(_task(db, vessel), t0, owner="crashed-worker")

        result = scheduler.run_manual_check(db, vessel, FakeProvider(), now=t0 + timedelta(minutes=20))

        assert result.effect == Effect.OPEN
        assert _task(db, vessel).lease_owner is None

    def test_failure_releases_lease(self, db, t0):
        vessel = _tracked_vessel(db, "235000001", "owner-1", t0)
        provider = FakeProvider(errors={"235000001": TransientProviderError("HTTP 503", status_code=503)})

        with pytest.raises(TransientProviderError):
            scheduler.run_manual_check(db, vessel, provider, now=t0)

        task = _task(db, vessel)
        assert task.lease_owner is None
        assert task.next_run == t0
        assert task.consecutive_failures == 1


class TestRunForever:
    def test_ticks_immediately_and_stops(self):
        stop = threading.Event()
        with patch("seatime.modules.scheduler.tick", side_effect=lambda **kw: stop.set()) as mock_tick:
            scheduler.run_forever(stop, provider=FakeProvider())
        mock_tick.assert_called_once()

    def test_tick_exception_does_not_kill_loop(self):
        stop = threading.Event()
        calls = []

        def flaky_tick(**kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            stop.set()

        with patch("seatime.modules.scheduler.tick", side_effect=flaky_tick), \
                patch("seatime.modules.scheduler.settings") as mock_settings:
            mock_settings.SCHEDULER_TICK_SECONDS = 0
            mock_settings.SCHEDULER_MAX_WORKERS = 1
            mock_settings.SCHEDULER_LEASE_SECONDS = 900
            scheduler.run_forever(stop, provider=FakeProvider())
        assert len(calls) == 2
