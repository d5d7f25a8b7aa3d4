"""JSON documents for the current period and the period archive."""

from __future__ import annotations

import json
import logging
import pathlib
from datetime import datetime

from bidme.errors import BidMeError, ErrorKind
from bidme.models import PERIOD_INACTIVE, PeriodData
from bidme.utils.dates import to_iso, utcnow

logger = logging.getLogger(__name__)

DATA_DIR = pathlib.Path(".bidme") / "data"
PERIOD_FILE = "current-period.json"
ARCHIVE_DIR = "archive"


def data_dir(target: pathlib.Path | str | None = None) -> pathlib.Path:
    return pathlib.Path(target or ".") / DATA_DIR


def period_path(target: pathlib.Path | str | None = None) -> pathlib.Path:
    return data_dir(target) / PERIOD_FILE


def load_period(target: pathlib.Path | str | None = None) -> PeriodData | None:
    """Return the current period, or ``None`` when no document exists."""
    path = period_path(target)
    if not path.exists():
        return None
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BidMeError(
            "Period data file is corrupted",
            ErrorKind.PERIOD_DATA_INVALID,
            context={"path": str(path)},
        ) from exc
    return PeriodData.from_dict(data)


def save_period(period: PeriodData, target: pathlib.Path | str | None = None) -> pathlib.Path:
    path = period_path(target)
    _write_json(path, period.to_dict())
    return path


def archive_path(period_id: str, target: pathlib.Path | str | None = None) -> pathlib.Path:
    return data_dir(target) / ARCHIVE_DIR / f"{period_id}.json"


def archive_period(period: PeriodData, target: pathlib.Path | str | None = None) -> pathlib.Path:
    path = archive_path(period.period_id, target)
    _write_json(path, period.to_dict())
    logger.info("Period archived to %s", path)
    return path


def archived_period_ids(target: pathlib.Path | str | None = None) -> set[str]:
    folder = data_dir(target) / ARCHIVE_DIR
    if not folder.exists():
        return set()
    return {p.stem for p in folder.glob("*.json")}


def inactive_period(now: datetime | None = None) -> PeriodData:
    return PeriodData(
        period_id="",
        status=PERIOD_INACTIVE,
        start_date="",
        end_date="",
        created_at=to_iso(now or utcnow()),
    )


def _write_json(path: pathlib.Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
