import pytest

from netharness.errors import RpcError, SanityError
from netharness.gossip.models import ContactInfo, DiscoveryResult
from netharness.observers.dispatcher import EventBus
from netharness.observers.events import SanityFinished
from netharness.sanity.checker import CheckStatus, SanityChecker, SanityOptions


class FakeClient:
    health = "ok"

    def __init__(self, url):
        self.url = url

    def get_health(self):
        if isinstance(self.health, Exception):
            raise self.health
        return self.health

    def get_transaction_count(self):
        return 7


class FakeDiscovery:
    def __init__(self, seen, extra=0):
        self.seen = seen
        self.extra = extra
        self.calls = []

    def discover(self, entry_point, expected):
        self.calls.append((entry_point, expected))
        contacts = tuple(ContactInfo(f"n{i}", (f"10.0.0.{i}", 8001)) for i in range(1, self.seen + 1))
        return DiscoveryResult(entry_point, expected, contacts[:expected], overflow=self.extra)


def _checker(cfg, fleet, discovery, client=FakeClient, capture=None):
    return SanityChecker(
        cfg,
        connect=fleet.connect,
        client_factory=client,
        discovery=discovery,
        bus=EventBus([capture]) if capture else None,
    )


def _ledger_ran(fleet):
    return any("solana-ledger-tool --ledger state/ledger verify" in c for _, c in fleet.trace)


def test_all_checks_pass(make_cfg, fleet, capture):
    disc = FakeDiscovery(3)
    report = _checker(make_cfg(), fleet, disc, capture=capture).check("10.0.0.1", 3)
    assert report.ok
    assert report.summary() == {"ledger-verify": "passed", "validator": "passed", "node-count": "passed"}
    assert disc.calls[0][0].rpc_url == "http://10.0.0.1:8899"
    assert capture.of(SanityFinished)[0].ok


def test_reject_extra_nodes_alone_keeps_ledger_verification(make_cfg, fleet):
    opts = SanityOptions.from_flags(["rejectExtraNodes"])
    assert not opts.skip_ledger_verify and not opts.skip_validator_sanity
    report = _checker(make_cfg(), fleet, FakeDiscovery(3)).check("10.0.0.1", 3, opts)
    assert _ledger_ran(fleet)
    assert report.summary()["ledger-verify"] == "passed"


def test_skipping_ledger_keeps_other_checks(make_cfg, fleet):
    disc = FakeDiscovery(3, extra=1)
    opts = SanityOptions.from_flags(["noLedgerVerify"])
    assert not opts.reject_extra_nodes
    report = _checker(make_cfg(), fleet, disc).check("10.0.0.1", 3, opts)
    assert not _ledger_ran(fleet)
    assert report.summary() == {"ledger-verify": "skipped", "validator": "passed", "node-count": "passed"}


def test_each_flag_skips_only_its_check(make_cfg, fleet):
    report = _checker(make_cfg(), fleet, FakeDiscovery(3)).check(
        "10.0.0.1", 3, SanityOptions(skip_validator_sanity=True)
    )
    assert report.summary() == {"ledger-verify": "passed", "validator": "skipped", "node-count": "passed"}

    disc = FakeDiscovery(0)
    report = _checker(make_cfg(), fleet, disc).check("10.0.0.1", 3, SanityOptions(skip_node_count=True))
    assert report.ok and disc.calls == []


def test_extra_nodes_fail_only_when_rejected(make_cfg, fleet):
    disc = FakeDiscovery(3, extra=2)
    checker = _checker(make_cfg(), fleet, disc)
    assert checker.check("10.0.0.1", 3).ok
    report = checker.check("10.0.0.1", 3, SanityOptions(reject_extra_nodes=True))
    assert not report.ok
    assert "2 unexpected extra" in report.failures()[0].detail


def test_failures_are_collected_not_short_circuited(make_cfg, fleet):
    class Down(FakeClient):
        health = RpcError("getHealth", "http://10.0.0.1:8899", "refused")

    fleet.host("10.0.0.1").fail["ledger-tool"] = (1, "ledger corrupt")
    report = _checker(make_cfg(), fleet, FakeDiscovery(1), client=Down).check("10.0.0.1", 3)
    assert [c.status for c in report.checks] == [CheckStatus.FAILED] * 3
    assert "ledger corrupt" in report.checks[0].detail
    assert "discovered 1 of 3" in report.checks[2].detail


def test_unhealthy_node_fails_validator_check(make_cfg, fleet):
    class Behind(FakeClient):
        health = "behind"

    report = _checker(make_cfg(), fleet, FakeDiscovery(3), client=Behind).check("10.0.0.1", 3)
    assert report.summary()["validator"] == "failed"


def test_check_or_raise_carries_report(make_cfg, fleet):
    fleet.host("10.0.0.1").fail["ledger-tool"] = (1, "bad")
    with pytest.raises(SanityError) as ei:
        _checker(make_cfg(), fleet, FakeDiscovery(3)).check_or_raise("10.0.0.1", 3)
    assert ei.value.report.summary()["ledger-verify"] == "failed"
    assert "ledger-verify" in str(ei.value)


def test_unknown_flag_is_rejected():
    with pytest.raises(ValueError, match="Unknown option"):
        SanityOptions.from_flags(["noSuchThing"])
