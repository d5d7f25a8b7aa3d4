import json

import pytest

from bidme.errors import BidMeError, ErrorKind
from bidme.models import PERIOD_INACTIVE, PaymentRecord
from bidme.store import (
    archive_period,
    archived_period_ids,
    inactive_period,
    load_period,
    period_path,
    save_period,
)

from conftest import NOW, make_bid


def test_missing_period_file(tmp_path):
    assert load_period(tmp_path) is None


def test_save_and_load(tmp_path, period):
    period.bids.append(make_bid("alice", 60, 1))
    period.payment = PaymentRecord(payment_status="paid", provider="stripe", winner="alice", attempts=1)
    save_period(period, tmp_path)

    raw = json.loads(period_path(tmp_path).read_text())
    assert raw["bids"][0]["comment_id"] == 1
    assert raw["payment"]["payment_status"] == "paid"

    loaded = load_period(tmp_path)
    assert loaded == period


def test_corrupted_file(tmp_path):
    path = period_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{not json")
    with pytest.raises(BidMeError) as info:
        load_period(tmp_path)
    assert info.value.kind == ErrorKind.PERIOD_DATA_INVALID


def test_archive(tmp_path, period):
    path = archive_period(period, tmp_path)
    assert path.name == "period-2026-02-01.json"
    assert archived_period_ids(tmp_path) == {"period-2026-02-01"}


def test_inactive_stub():
    stub = inactive_period(NOW)
    assert stub.status == PERIOD_INACTIVE
    assert not stub.is_active
    assert stub.created_at == "2026-02-01T12:00:00.000Z"
