import httpx
import pytest
import respx

from bidme.banner import inspect_banner
from bidme.config import build_config
from bidme.render import (
    BANNER_END,
    BANNER_START,
    clear_strikethrough,
    issue_body,
    issue_title,
    render,
    replace_banner,
    strikethrough,
    with_tracking,
)

from conftest import NOW, make_bid

README = f"""# My Project

{BANNER_START}
old banner
{BANNER_END}

More text.
"""


def test_issue_title(period):
    assert issue_title(period) == "🎯 BidMe: Banner Bidding [Feb 1 - Feb 8, 2026]"


def test_issue_body_lists_bids_by_amount(period, config):
    period.bids += [make_bid("alice", 60, 1), make_bid("bob", 80, 2, status="pending")]
    body = issue_body(config, period, now=NOW)
    assert "**$60** by @alice" in body
    assert body.index("@bob") < body.index("@alice |")
    assert "⏳ pending" in body
    assert "7 days remaining" in body


def test_issue_body_without_bids(period, config):
    body = issue_body(config, period, now=NOW)
    assert "No bids yet" in body
    assert "png, jpg, svg" in body


def test_with_tracking(config):
    url = with_tracking("https://example.com/page?ref=x", config, "octo", "site")
    assert url == "https://example.com/page?ref=x&source=bidme&repo=octo/site"
    plain = build_config({"tracking": {"append_utm": False}})
    assert with_tracking("https://example.com", plain, "octo", "site") == "https://example.com"


def test_replace_banner(config):
    bid = make_bid("alice", 60, 1)
    updated = replace_banner(README, bid, "https://example.com?source=bidme", config)
    assert "old banner" not in updated
    assert 'src="https://example.com/banner.png"' in updated
    assert "Sponsored by @alice" in updated
    assert updated.startswith("# My Project")
    assert updated.endswith("More text.\n")


def test_replace_banner_without_markers(config):
    assert replace_banner("# Plain README\n", make_bid("alice", 60, 1), "https://x.io", config) is None


def test_strikethrough_round_trip():
    assert strikethrough("bid") == "~~bid~~"
    assert strikethrough("~~bid~~") == "~~bid~~"
    assert clear_strikethrough("~~bid~~") == "bid"
    assert clear_strikethrough("bid") == "bid"


def test_rejection_comment_lists_errors():
    text = render("bid_rejected", title="Bid Rejected", errors=["Bid must be at least $50"])
    assert "Bid must be at least $50" in text


@pytest.mark.asyncio
async def test_inspect_banner_reads_headers():
    async with respx.mock() as router:
        router.head("https://cdn.example.com/banner").mock(
            return_value=httpx.Response(200, headers={"content-type": "image/jpeg", "content-length": "2049"})
        )
        async with httpx.AsyncClient() as session:
            info = await inspect_banner("https://cdn.example.com/banner", session=session)
    assert info.format == "jpg"
    assert info.size_kb == 3


@pytest.mark.asyncio
async def test_inspect_banner_falls_back_to_extension():
    async with respx.mock() as router:
        router.head("https://cdn.example.com/banner.png").mock(return_value=httpx.Response(404))
        async with httpx.AsyncClient() as session:
            info = await inspect_banner("https://cdn.example.com/banner.png", session=session)
    assert info.format == "png"
    assert info.size_kb is None
