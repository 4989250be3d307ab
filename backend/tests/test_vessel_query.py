"""Spatial query service — bounds validation, antimeridian split, freshness filter."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from aislive.exceptions import BoundingBoxError
from aislive.modules.vessel_query import query_vessels_in_bbox, split_antimeridian, validate_bbox

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _row(mmsi, lat, lon, course):
    return SimpleNamespace(mmsi=mmsi, lat=lat, lon=lon, course=course)


def _filter_sql(mock_db) -> tuple[str, dict]:
    """Compile the criteria passed to query().filter()."""
    from sqlalchemy import and_

    criteria = mock_db.query.return_value.filter.call_args[0]
    compiled = and_(*criteria).compile(dialect=postgresql.dialect())
    return " ".join(str(compiled).split()), compiled.params


class TestValidateBbox:
    def test_valid_box(self):
        assert validate_bbox(5, 5, 15, 15) == (5.0, 5.0, 15.0, 15.0)

    def test_string_numbers_accepted(self):
        assert validate_bbox("5", "5.5", "15", "15") == (5.0, 5.5, 15.0, 15.0)

    def test_full_world(self):
        assert validate_bbox(-180, -90, 180, 90) == (-180.0, -90.0, 180.0, 90.0)

    @pytest.mark.parametrize("args,param", [
        ((5, 95, 15, 15), "min-lat"),
        ((5, 5, 15, 91), "max-lat"),
        ((-181, 5, 15, 15), "min-lon"),
        ((5, 5, 180.5, 15), "max-lon"),
        ((None, 5, 15, 15), "min-lon"),
        ((5, None, 15, 15), "min-lat"),
        ((5, 5, None, 15), "max-lon"),
        ((5, 5, 15, None), "max-lat"),
        (("abc", 5, 15, 15), "min-lon"),
        ((float("nan"), 5, 15, 15), "min-lon"),
        ((5, float("inf"), 15, 15), "min-lat"),
    ])
    def test_rejected(self, args, param):
        with pytest.raises(BoundingBoxError) as exc_info:
            validate_bbox(*args)
        assert exc_info.value.param == param

    def test_inverted_latitude_rejected(self):
        with pytest.raises(BoundingBoxError):
            validate_bbox(5, 20, 15, 10)

    def test_inverted_longitude_allowed(self):
        assert validate_bbox(170, -10, -170, 10) == (170.0, -10.0, -170.0, 10.0)


class TestSplitAntimeridian:
    def test_normal_box_single_envelope(self):
        assert split_antimeridian(5, 5, 15, 15) == [(5, 5, 15, 15)]

    def test_crossing_box_two_envelopes(self):
        assert split_antimeridian(170, -10, -170, 10) == [
            (170, -10, 180.0, 10),
            (-180.0, -10, -170, 10),
        ]


class TestQueryVesselsInBbox:
    def test_invalid_box_never_touches_store(self):
        db = MagicMock()
        with pytest.raises(BoundingBoxError):
            query_vessels_in_bbox(db, 5, 95, 15, 15, now=NOW)
        db.query.assert_not_called()
        db.execute.assert_not_called()

    def test_maps_rows(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.all.return_value = [
            _row(257123456, 10.0, 10.0, 182.4),
            _row(219000001, 11.5, 12.25, None),
        ]
        result = query_vessels_in_bbox(db, 5, 5, 15, 15, now=NOW)
        assert result == [
            {"mmsi": 257123456, "lat": 10.0, "lon": 10.0, "course": 182.4},
            {"mmsi": 219000001, "lat": 11.5, "lon": 12.25, "course": None},
        ]

    def test_course_zero_is_not_unknown(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.all.return_value = [_row(1, 0.0, 0.0, 0.0)]
        assert query_vessels_in_bbox(db, -1, -1, 1, 1, now=NOW)[0]["course"] == 0.0

    def test_freshness_cutoff_default_two_minutes(self):
        db = MagicMock()
        query_vessels_in_bbox(db, 5, 5, 15, 15, now=NOW)
        sql, params = _filter_sql(db)
        assert "vessels.last_seen >=" in sql
        assert NOW - timedelta(minutes=2) in params.values()

    def test_custom_freshness(self):
        db = MagicMock()
        query_vessels_in_bbox(db, 5, 5, 15, 15, now=NOW, freshness=timedelta(minutes=10))
        _, params = _filter_sql(db)
        assert NOW - timedelta(minutes=10) in params.values()

    def test_single_envelope_filter(self):
        db = MagicMock()
        query_vessels_in_bbox(db, 5, 5, 15, 15, now=NOW)
        sql, params = _filter_sql(db)
        assert sql.count("ST_MakeEnvelope(") == 1
        assert sql.count("vessels.geom &&") == 1
        for value in (5.0, 15.0, 4326):
            assert value in params.values()

    def test_antimeridian_two_envelopes(self):
        db = MagicMock()
        query_vessels_in_bbox(db, 170, -10, -170, 10, now=NOW)
        sql, params = _filter_sql(db)
        assert sql.count("ST_MakeEnvelope(") == 2
        assert sql.count("vessels.geom &&") == 2
        assert " OR " in sql
        assert 180.0 in params.values()
        assert -180.0 in params.values()

    def test_store_error_propagates(self):
        from sqlalchemy.exc import OperationalError

        db = MagicMock()
        db.query.return_value.filter.return_value.all.side_effect = OperationalError(
            "SELECT", {}, Exception("down")
        )
        with pytest.raises(OperationalError):
            query_vessels_in_bbox(db, 5, 5, 15, 15, now=NOW)
