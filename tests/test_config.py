import pytest
from pydantic import ValidationError

from bidme.config import CONFIG_PATH, build_config, load_config
from bidme.errors import ConfigError, ErrorKind


def write_config(tmp_path, text):
    path = tmp_path / CONFIG_PATH
    path.parent.mkdir(parents=True)
    path.write_text(text, encoding="utf-8")


def test_defaults_when_file_missing(tmp_path):
    config = load_config(tmp_path)
    assert config.bidding.minimum_bid == 50
    assert config.bidding.increment == 5
    assert config.bidding.duration_days == 7
    assert config.banner.formats == ("png", "jpg", "svg")
    assert config.approval.mode == "emoji"
    assert config.payment.provider == "stripe"
    assert not config.payment.allow_unlinked_bids
    assert config.content_guidelines.required == ()


def test_partial_file_merges_with_defaults(tmp_path):
    write_config(
        tmp_path,
        "bidding:\n  duration: 14\n  minimum_bid: 100\napproval:\n  mode: auto\nunknown_section: true\n",
    )
    config = load_config(tmp_path)
    assert config.bidding.duration_days == 14
    assert config.bidding.minimum_bid == 100
    assert config.bidding.increment == 5
    assert config.approval.mode == "auto"


def test_empty_file_is_defaults(tmp_path):
    write_config(tmp_path, "")
    assert load_config(tmp_path) == build_config()


@pytest.mark.parametrize(
    "data",
    [
        {"bidding": {"minimum_bid": -1}},
        {"approval": {"mode": "manual"}},
        {"payment": {"provider": "paypal"}},
        {"payment": {"bidme_fee_percent": 150}},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ConfigError) as info:
        build_config(data)
    assert info.value.kind == ErrorKind.CONFIG_INVALID


def test_unparseable_yaml(tmp_path):
    write_config(tmp_path, "bidding: [unclosed\n")
    with pytest.raises(ConfigError, match="Could not parse"):
        load_config(tmp_path)


def test_non_mapping_document(tmp_path):
    write_config(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(tmp_path)


def test_config_is_frozen(config):
    with pytest.raises(ValidationError):
        config.bidding.minimum_bid = 10
