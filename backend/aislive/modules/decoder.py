"""Decode aisstream.io JSON frames into typed position reports.

Every frame decodes to exactly one of:

* ``PositionReport`` — a ``PositionReport`` message with the fields the
  pipeline needs, types already checked;
* ``DecodeError`` — why the frame was not usable, including the message
  kind when one could be read (so callers can tell "other message type"
  apart from "broken frame").

Nothing downstream inspects raw dicts.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

POSITION_REPORT = "PositionReport"

# COG 360.0 (raw 3600) means "not available"
_COG_NOT_AVAILABLE = 360.0


@dataclass(frozen=True)
class PositionReport:
    mmsi: int
    latitude: float
    longitude: float
    course: float | None = None
    ship_name: str | None = None
    report_time: str | None = None


@dataclass(frozen=True)
class DecodeError:
    reason: str
    message_type: str | None = None

    @property
    def unsupported_kind(self) -> bool:
        """True when the frame was well-formed but not a position report."""
        return self.message_type is not None and self.message_type != POSITION_REPORT


DecodeResult = Union[PositionReport, DecodeError]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_course(raw: Any) -> float | None:
    if not _is_number(raw):
        return None
    course = float(raw)
    if course < 0 or course >= _COG_NOT_AVAILABLE:
        return None
    return course


def decode_frame(raw: str | bytes) -> DecodeResult:
    """Decode one wire frame."""
    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return DecodeError(f"Invalid JSON: {exc}")
    return decode_envelope(envelope)


def decode_envelope(envelope: Any) -> DecodeResult:
    """Decode an already-parsed aisstream envelope."""
    if not isinstance(envelope, dict):
        return DecodeError(f"Envelope is not an object: {type(envelope).__name__}")

    msg_type = envelope.get("MessageType")
    if not isinstance(msg_type, str) or not msg_type:
        # aisstream reports subscription problems as {"error": "..."}
        if "error" in envelope:
            return DecodeError(f"Feed error: {envelope['error']}")
        return DecodeError("Missing MessageType")
    if msg_type != POSITION_REPORT:
        return DecodeError(f"Unsupported message type {msg_type!r}", message_type=msg_type)

    message = envelope.get("Message")
    report = message.get(POSITION_REPORT) if isinstance(message, dict) else None
    if not isinstance(report, dict):
        return DecodeError("Missing Message.PositionReport body", message_type=msg_type)

    meta = envelope.get("MetaData")
    if not isinstance(meta, dict):
        meta = {}

    mmsi = report.get("UserID")
    if not isinstance(mmsi, int) or isinstance(mmsi, bool) or mmsi <= 0:
        return DecodeError(f"Invalid UserID: {mmsi!r}", message_type=msg_type)

    lat = report.get("Latitude")
    lon = report.get("Longitude")
    if not _is_number(lat) or not _is_number(lon):
        return DecodeError(
            f"Missing or non-numeric coordinates for MMSI {mmsi}: lat={lat!r}, lon={lon!r}",
            message_type=msg_type,
        )

    ship_name = meta.get("ShipName")
    if isinstance(ship_name, str):
        ship_name = ship_name.strip()
    else:
        ship_name = None

    report_time = meta.get("time_utc")
    if not isinstance(report_time, str) or not report_time.strip():
        report_time = None

    return PositionReport(
        mmsi=mmsi,
        latitude=float(lat),
        longitude=float(lon),
        course=_decode_course(report.get("Cog")),
        ship_name=ship_name,
        report_time=report_time,
    )
