"""Datetime helpers."""

from __future__ import annotations

from datetime import date, datetime

import pendulum


def utcnow() -> pendulum.DateTime:
    return pendulum.now("UTC")


def parse_timestamp(value: str) -> pendulum.DateTime:
    return pendulum.parse(value).in_timezone("UTC")


def to_iso(value: datetime) -> str:
    """Render as ISO-8601 UTC with milliseconds, e.g. 2026-02-01T12:00:00.000Z."""
    stamp = pendulum.instance(value).in_timezone("UTC")
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def format_short_range(start: datetime, end: datetime) -> str:
    return f"{start.strftime('%b')} {start.day} - {end.strftime('%b')} {end.day}, {end.year}"


def as_utc(value: datetime) -> pendulum.DateTime:
    return pendulum.instance(value).in_timezone("UTC")


def format_deadline(value: datetime) -> str:
    return as_utc(value).format("YYYY-MM-DD HH:mm") + " UTC"
