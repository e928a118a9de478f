"""Tests for the seatime CLI commands."""
from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from seatime.cli import app
from seatime.models.sea_time_entry import SeaTimeEntry
from seatime.models.vessel import Vessel
from seatime.modules.entry_repository import TaskStore
from seatime.modules.scheduler import TickResult
from seatime.modules.vessel_registry import activate_vessel

runner = CliRunner()


@pytest.fixture
def cli_db(session_factory):
    """Point the CLI's SessionLocal at the in-memory database."""
    with patch("seatime.database.SessionLocal", session_factory):
        yield


@pytest.fixture
def entry(db, t0):
    v = Vessel(owner_id="owner-1", mmsi="235000001", name="SEA LION")
    db.add(v)
    db.flush()
    e = SeaTimeEntry(vessel_id=v.id, start_time=t0, end_time=t0 + timedelta(hours=6), duration_hours=6.0)
    db.add(e)
    db.commit()
    return e


# ---------------------------------------------------------------------------
# review
# ---------------------------------------------------------------------------


def test_pending_empty(cli_db):
    result = runner.invoke(app, ["pending"])
    assert result.exit_code == 0
    assert "No entries awaiting review" in result.output


def test_pending_lists_entries(cli_db, entry):
    result = runner.invoke(app, ["pending", "--owner", "owner-1"])
    assert result.exit_code == 0
    assert "SEA LION" in result.output
    assert "6.00" in result.output


def test_confirm(cli_db, entry):
    result = runner.invoke(app, ["confirm", str(entry.id), "--department", "deck"])
    assert result.exit_code == 0, result.output
    assert f"Confirmed entry {entry.id}" in result.output
    assert "1 sea day(s)" in result.output


def test_confirm_unknown_entry(cli_db):
    result = runner.invoke(app, ["confirm", "9999", "--department", "deck"])
    assert result.exit_code == 1
    assert "9999" in result.output


def test_confirm_bad_department(cli_db, entry):
    result = runner.invoke(app, ["confirm", str(entry.id), "--department", "galley"])
    assert result.exit_code == 1


def test_reject(cli_db, entry):
    result = runner.invoke(app, ["reject", str(entry.id), "--notes", "Delivery trip, not serving"])
    assert result.exit_code == 0
    assert f"Rejected entry {entry.id}" in result.output


# ---------------------------------------------------------------------------
# reports & maintenance
# ---------------------------------------------------------------------------


def test_summary(cli_db, entry):
    runner.invoke(app, ["confirm", str(entry.id), "--department", "deck"])
    result = runner.invoke(app, ["summary"])
    assert result.exit_code == 0
    assert "6.00 h" in result.output
    assert "Actual sea days: 1" in result.output


def test_verify_tasks(cli_db, db, entry):
    vessel = db.query(Vessel).one()
    vessel.is_active = True
    db.commit()
    result = runner.invoke(app, ["verify-tasks"])
    assert result.exit_code == 0
    assert "1 created" in result.output


@patch("seatime.modules.scheduler.tick")
def test_tick_reports_failures(mock_tick):
    mock_tick.return_value = TickResult(due=2, claimed=2, succeeded=1, failed=1, errors={7: "HTTP 503"})
    result = runner.invoke(app, ["tick"])
    assert result.exit_code == 1
    assert "HTTP 503" in result.output


@patch("seatime.modules.scheduler.tick")
def test_tick_success(mock_tick):
    mock_tick.return_value = TickResult(due=1, claimed=1, succeeded=1)
    result = runner.invoke(app, ["tick"])
    assert result.exit_code == 0
    assert "Succeeded: 1" in result.output


def test_check_vessel_unknown(cli_db):
    result = runner.invoke(app, ["check-vessel", "9999"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_check_vessel_while_leased(cli_db, db):
    v = Vessel(owner_id="owner-1", mmsi="235000001", name="SEA LION")
    db.add(v)
    db.commit()
    activate_vessel(db, v.id, now=datetime.utcnow())
    store = TaskStore(db)
    store.claim(store.get_for_vessel(v.id), datetime.utcnow(), owner="worker-A")

    with patch("seatime.modules.position_provider.MyShipTrackingProvider") as provider_cls:
        result = runner.invoke(app, ["check-vessel", str(v.id)])
    assert result.exit_code == 1
    assert "worker-A" in result.output
    provider_cls.return_value.fetch_position.assert_not_called()
