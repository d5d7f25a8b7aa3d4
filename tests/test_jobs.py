from datetime import timedelta

import pytest

from bidme.banner import BannerInfo
from bidme.errors import PaymentDeclined
from bidme.github import Comment, Issue, Reaction
from bidme.jobs.check_grace import run_check_grace
from bidme.jobs.close_bidding import run_close_bidding
from bidme.jobs.open_bidding import run_open_bidding
from bidme.jobs.process_approval import pick_reaction, run_process_approval
from bidme.jobs.process_bid import run_process_bid
from bidme.jobs.setup_payment import run_confirm_payment, run_setup_payment
from bidme.models import (
    BID_APPROVED,
    BID_PENDING,
    BID_UNLINKED_PENDING,
    PERIOD_CLOSED,
    PERIOD_CLOSING,
    PERIOD_INACTIVE,
    PERIOD_OPEN,
    PaymentRecord,
)
from bidme.registry import BidderRegistry
from bidme.render import BANNER_END, BANNER_START
from bidme.store import archive_path, load_period, period_path, save_period

from conftest import NOW, FakeGateway, make_bid

BID_COMMENT = """```yaml
amount: 120
banner_url: https://example.com/banner.png
destination_url: https://example.com
contact: alice@example.com
```"""


class FakeGitHub:
    """Records every call the jobs make against the repository."""

    owner = "octo"
    repo = "site"

    def __init__(self, comments=None, reactions=None, readme="", issue_state="open"):
        self.issue_state = issue_state
        self.comments = dict(comments or {})
        self.reactions = dict(reactions or {})
        self.readme = readme
        self.posted = []
        self.bodies = []
        self.edited = {}
        self.closed = []
        self.pinned = []
        self.unpinned = []

    async def create_issue(self, title, body, labels=None):
        self.bodies.append(body)
        return Issue(number=7, html_url="https://github.com/octo/site/issues/7", title=title, body=body, node_id="I_7")

    async def pin_issue(self, node_id):
        self.pinned.append(node_id)

    async def unpin_issue(self, node_id):
        self.unpinned.append(node_id)

    async def update_issue_body(self, number, body):
        self.bodies.append(body)

    async def get_issue(self, number):
        return Issue(number=number, html_url=f"https://github.com/octo/site/issues/{number}", state=self.issue_state)

    async def close_issue(self, number):
        self.closed.append(number)
        self.issue_state = "closed"

    async def add_comment(self, issue_number, body):
        self.posted.append(body)
        return Comment(id=900 + len(self.posted), body=body, author="github-actions")

    async def get_comment(self, comment_id):
        return Comment(id=comment_id, body=self.comments[comment_id], author="alice")

    async def update_comment(self, comment_id, body):
        self.edited[comment_id] = body
        self.comments[comment_id] = body

    async def get_reactions(self, comment_id):
        return self.reactions.get(comment_id, [])

    async def get_readme(self):
        return self.readme, "sha1"

    async def update_readme(self, content, message, *, sha=None):
        self.readme = content

    async def close(self):
        pass


@pytest.fixture(autouse=True)
def local_env(monkeypatch):
    for name in ("GITHUB_TOKEN", "GITHUB_REPOSITORY", "GITHUB_REPOSITORY_OWNER", "STRIPE_SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)


def link(tmp_path, *names):
    registry = BidderRegistry.load(tmp_path)
    for name in names:
        registry.mark_payment_linked(name, f"cus_{name}", f"pm_{name}", now=NOW)
    registry.save(tmp_path)


def write_readme(tmp_path):
    path = tmp_path / "README.md"
    path.write_text(f"# Site\n\n{BANNER_START}\n{BANNER_END}\n", encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_local_auction_lifecycle(tmp_path):
    readme = write_readme(tmp_path)
    link(tmp_path, "alice")

    opened = await run_open_bidding(tmp_path, now=NOW)
    assert opened.success
    assert load_period(tmp_path).status == PERIOD_OPEN

    bid = await run_process_bid(0, 101, tmp_path, comment_body=BID_COMMENT, author="alice", now=NOW)
    assert bid.success
    assert load_period(tmp_path).bids[0].status == BID_PENDING

    approved = await run_process_approval(0, 101, tmp_path, reactions=["+1"])
    assert approved.success
    assert load_period(tmp_path).bids[0].status == BID_APPROVED

    gateway = FakeGateway()
    closed = await run_close_bidding(tmp_path, now=NOW + timedelta(days=7), gateway=gateway)
    assert closed.success
    assert closed.message == "Period closed, winner: @alice ($120)"
    assert gateway.charges[0]["payment_method"] == "pm_alice"
    assert load_period(tmp_path).status == PERIOD_INACTIVE
    assert archive_path("period-2026-02-01", tmp_path).exists()
    assert 'src="https://example.com/banner.png"' in readme.read_text()
    assert "source=bidme" in readme.read_text()

    reopened = await run_open_bidding(tmp_path, now=NOW + timedelta(days=8))
    assert reopened.success


@pytest.mark.asyncio
async def test_open_twice_fails(tmp_path):
    assert (await run_open_bidding(tmp_path, now=NOW)).success
    again = await run_open_bidding(tmp_path, now=NOW)
    assert not again.success


@pytest.mark.asyncio
async def test_open_creates_and_pins_issue(tmp_path):
    github = FakeGitHub()
    result = await run_open_bidding(tmp_path, now=NOW, github=github)
    assert result.success
    period = load_period(tmp_path)
    assert period.issue_number == 7
    assert period.issue_node_id == "I_7"
    assert github.pinned == ["I_7"]
    assert "No bids yet" in github.bodies[0]


@pytest.mark.asyncio
async def test_bid_without_period(tmp_path):
    result = await run_process_bid(0, 1, tmp_path, comment_body=BID_COMMENT, author="alice")
    assert not result.success
    assert result.message == "No active bidding period found"


@pytest.mark.asyncio
async def test_unparseable_bid_gets_format_help(tmp_path, period):
    save_period(period, tmp_path)
    github = FakeGitHub(comments={5: "I bid fifty bucks"})
    result = await run_process_bid(42, 5, tmp_path, github=github, now=NOW)
    assert not result.success
    assert "amount:" in github.posted[0]


@pytest.mark.asyncio
async def test_unlinked_bid_is_struck_through(tmp_path, period):
    save_period(period, tmp_path)
    github = FakeGitHub(comments={5: BID_COMMENT})
    result = await run_process_bid(42, 5, tmp_path, github=github, banner=BannerInfo("png", 12), now=NOW)

    assert result.success
    assert load_period(tmp_path).bids[0].status == BID_UNLINKED_PENDING
    assert github.edited[5].startswith("~~")
    assert "2026-02-02 12:00 UTC" in github.posted[0]
    assert BidderRegistry.load(tmp_path).get_bidder("alice").warned_at is not None


@pytest.mark.asyncio
async def test_oversized_banner_is_rejected(tmp_path, period):
    save_period(period, tmp_path)
    link(tmp_path, "alice")
    github = FakeGitHub(comments={5: BID_COMMENT})
    result = await run_process_bid(42, 5, tmp_path, github=github, banner=BannerInfo("png", 900), now=NOW)
    assert not result.success
    assert load_period(tmp_path).bids == []
    assert "max allowed is 200KB" in github.posted[0]


@pytest.mark.asyncio
async def test_duplicate_bid_comment_is_success(tmp_path, period):
    link(tmp_path, "alice")
    save_period(period, tmp_path)
    first = await run_process_bid(42, 5, tmp_path, comment_body=BID_COMMENT, author="alice", now=NOW)
    second = await run_process_bid(42, 5, tmp_path, comment_body=BID_COMMENT, author="alice", now=NOW)
    assert first.success and second.success
    assert len(load_period(tmp_path).bids) == 1


def test_pick_reaction_prefers_approval(config):
    assert pick_reaction(["eyes", "-1", "+1"], config) == "+1"
    assert pick_reaction(["eyes", "-1"], config) == "-1"
    assert pick_reaction([], config) is None


@pytest.mark.asyncio
async def test_approval_reads_owner_reactions(tmp_path, period):
    period.bids.append(make_bid("alice", 60, 5, status=BID_PENDING))
    save_period(period, tmp_path)
    github = FakeGitHub(reactions={5: [Reaction("+1", "mallory"), Reaction("-1", "octo")]})

    result = await run_process_approval(42, 5, tmp_path, github=github)

    assert result.success
    assert load_period(tmp_path).bids[0].status == "rejected"
    assert "Rejected" in github.posted[0]


@pytest.mark.asyncio
async def test_approval_skipped_in_auto_mode(tmp_path):
    config_dir = tmp_path / ".bidme"
    config_dir.mkdir()
    (config_dir / "config.yml").write_text("approval:\n  mode: auto\n")
    result = await run_process_approval(42, 5, tmp_path, reactions=["+1"])
    assert result.success
    assert "auto" in result.message


@pytest.mark.asyncio
async def test_close_without_period(tmp_path):
    result = await run_close_bidding(tmp_path, gateway=FakeGateway())
    assert result.success
    assert result.message == "No active bidding period found; nothing to close"


@pytest.mark.asyncio
async def test_close_publishes_to_github(tmp_path, period):
    link(tmp_path, "alice", "bob")
    period.issue_node_id = "I_42"
    period.bids += [make_bid("alice", 60, 1), make_bid("bob", 80, 2)]
    save_period(period, tmp_path)
    github = FakeGitHub(readme=f"# Site\n{BANNER_START}\n{BANNER_END}\n")

    result = await run_close_bidding(tmp_path, now=NOW, github=github, gateway=FakeGateway())

    assert result.success
    assert "Sponsored by @bob" in github.readme
    assert "Congratulations **@bob**" in github.posted[0]
    assert "Payment of **$80** received" in github.posted[0]
    assert github.unpinned == ["I_42"]
    assert github.closed == [42]


@pytest.mark.asyncio
async def test_close_without_bids_announces_and_closes_issue(tmp_path, period):
    period.issue_node_id = "I_42"
    save_period(period, tmp_path)
    github = FakeGitHub()
    gateway = FakeGateway()

    result = await run_close_bidding(tmp_path, now=NOW, github=github, gateway=gateway)

    assert result.success
    assert result.message == "Period closed: no winner"
    assert gateway.charges == []
    assert "no approved bids" in github.posted[0]
    assert github.unpinned == ["I_42"]
    assert github.closed == [42]
    assert archive_path("period-2026-02-01", tmp_path).exists()
    assert load_period(tmp_path).status == PERIOD_INACTIVE


def closed_before_archive(period):
    period.bids += [make_bid("alice", 60, 1), make_bid("bob", 80, 2)]
    period.status = PERIOD_CLOSED
    period.payment = PaymentRecord(
        payment_status="paid",
        provider="stripe",
        winner="bob",
        winner_comment_id=2,
        amount=80,
        charge_id="pi_1",
        attempts=1,
    )
    return period


@pytest.mark.asyncio
async def test_close_resumes_publishing_after_interrupted_run(tmp_path, period):
    save_period(closed_before_archive(period), tmp_path)
    github = FakeGitHub(readme=f"# Site\n{BANNER_START}\n{BANNER_END}\n")
    gateway = FakeGateway()

    result = await run_close_bidding(tmp_path, now=NOW, github=github, gateway=gateway)

    assert result.success
    assert gateway.charges == []
    assert "Sponsored by @bob" in github.readme
    assert "Congratulations **@bob**" in github.posted[0]
    assert github.closed == [42]
    assert archive_path("period-2026-02-01", tmp_path).exists()
    assert load_period(tmp_path).status == PERIOD_INACTIVE


@pytest.mark.asyncio
async def test_close_resume_does_not_repeat_announcement(tmp_path, period):
    save_period(closed_before_archive(period), tmp_path)
    github = FakeGitHub(issue_state="closed")

    result = await run_close_bidding(tmp_path, now=NOW, github=github, gateway=FakeGateway())

    assert result.success
    assert github.posted == []
    assert github.closed == []
    assert archive_path("period-2026-02-01", tmp_path).exists()


@pytest.mark.asyncio
async def test_declined_charge_keeps_period_closing(tmp_path, period):
    link(tmp_path, "alice", "bob")
    period.bids += [make_bid("alice", 60, 1), make_bid("bob", 80, 2)]
    save_period(period, tmp_path)
    github = FakeGitHub()
    gateway = FakeGateway(failures=[PaymentDeclined("Your card was declined.")])

    result = await run_close_bidding(tmp_path, now=NOW, github=github, gateway=gateway)

    assert not result.success
    assert result.message == "Payment failed: Your card was declined."
    saved = load_period(tmp_path)
    assert saved.status == PERIOD_CLOSING
    assert saved.payment.disqualified == [2]
    assert "@bob" in github.posted[0]

    retry = await run_close_bidding(tmp_path, now=NOW, gateway=gateway)
    assert retry.message == "Period closed, winner: @alice ($60)"


@pytest.mark.asyncio
async def test_corrupted_period_file(tmp_path):
    path = period_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{oops")
    result = await run_close_bidding(tmp_path, gateway=FakeGateway())
    assert not result.success


@pytest.mark.asyncio
async def test_check_grace_restores_and_unstrikes(tmp_path, period):
    period.bids.append(make_bid("alice", 60, 5, status=BID_UNLINKED_PENDING))
    save_period(period, tmp_path)
    link(tmp_path, "alice")
    github = FakeGitHub(comments={5: "~~bid~~"})

    result = await run_check_grace(tmp_path, now=NOW, github=github, gateway=FakeGateway())

    assert result.success
    assert load_period(tmp_path).bids[0].status == BID_PENDING
    assert github.edited[5] == "bid"
    assert "@alice" in github.posted[0]


@pytest.mark.asyncio
async def test_check_grace_without_period(tmp_path):
    result = await run_check_grace(tmp_path, gateway=FakeGateway())
    assert result.success


@pytest.mark.asyncio
async def test_setup_payment(tmp_path):
    github = FakeGitHub()
    result = await run_setup_payment("bob", 42, tmp_path, github=github, gateway=FakeGateway())
    assert result.success
    assert "https://checkout.test/cus_1" in result.message
    assert BidderRegistry.load(tmp_path).get_bidder("bob").stripe_customer_id == "cus_1"
    assert "https://checkout.test/cus_1" in github.posted[0]


@pytest.mark.asyncio
async def test_setup_payment_not_configured(tmp_path):
    result = await run_setup_payment("bob", 0, tmp_path, gateway=FakeGateway(token=None))
    assert not result.success


@pytest.mark.asyncio
async def test_confirm_payment(tmp_path):
    gateway = FakeGateway()
    gateway.methods["pm_9"] = "cus_9"
    result = await run_confirm_payment("bob", "pm_9", tmp_path, customer_id="cus_9", now=NOW, gateway=gateway)
    assert result.success
    assert BidderRegistry.load(tmp_path).is_payment_linked("bob")
