"""Stale vessel purge and the periodic maintenance loop."""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from aislive.modules.maintenance import purge_stale_vessels, run_maintenance_loop

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class _StopLoop(Exception):
    pass


def _stop_after(ticks):
    delays = []

    async def sleep(seconds):
        delays.append(seconds)
        if len(delays) >= ticks:
            raise _StopLoop()

    return sleep, delays


class TestPurgeStaleVessels:
    def test_deletes_and_commits(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.delete.return_value = 7
        assert purge_stale_vessels(db, max_age_minutes=60, now=NOW) == 7
        db.query.return_value.filter.return_value.delete.assert_called_once_with(synchronize_session=False)
        db.commit.assert_called_once()

    def test_cutoff_is_max_age_before_now(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.delete.return_value = 0
        purge_stale_vessels(db, max_age_minutes=60, now=NOW)
        criterion = db.query.return_value.filter.call_args[0][0]
        compiled = criterion.compile(dialect=postgresql.dialect())
        assert "vessels.last_seen <" in str(compiled)
        assert NOW - timedelta(minutes=60) in compiled.params.values()

    def test_default_age_from_settings(self, monkeypatch):
        from aislive.config import settings

        monkeypatch.setattr(settings, "VESSEL_MAX_AGE_MINUTES", 30)
        db = MagicMock()
        db.query.return_value.filter.return_value.delete.return_value = 0
        purge_stale_vessels(db, now=NOW)
        compiled = db.query.return_value.filter.call_args[0][0].compile(dialect=postgresql.dialect())
        assert NOW - timedelta(minutes=30) in compiled.params.values()


class TestMaintenanceLoop:
    def test_purges_each_tick_and_sleeps_interval(self):
        sessions = []

        def factory():
            db = MagicMock()
            db.query.return_value.filter.return_value.delete.return_value = 1
            sessions.append(db)
            return db

        sleep, delays = _stop_after(2)
        with pytest.raises(_StopLoop):
            asyncio.run(run_maintenance_loop(db_factory=factory, interval_minutes=15, sleep=sleep))
        assert len(sessions) == 2
        assert delays == [900, 900]
        for db in sessions:
            db.commit.assert_called_once()
            db.close.assert_called_once()

    def test_store_error_does_not_stop_loop(self):
        sessions = []

        def factory():
            db = MagicMock()
            if not sessions:
                db.query.return_value.filter.return_value.delete.side_effect = OperationalError(
                    "DELETE", {}, Exception("down")
                )
            else:
                db.query.return_value.filter.return_value.delete.return_value = 0
            sessions.append(db)
            return db

        sleep, _ = _stop_after(2)
        with pytest.raises(_StopLoop):
            asyncio.run(run_maintenance_loop(db_factory=factory, interval_minutes=1, sleep=sleep))
        assert len(sessions) == 2
        sessions[0].rollback.assert_called_once()
        sessions[0].close.assert_called_once()
        sessions[1].commit.assert_called_once()
