import pytest

from netharness.config.models import FullnodeConfig
from netharness.gossip.models import ContactInfo
from netharness.scenarios.models import FundedCredential, ScenarioStatus
from netharness.scenarios.runner import REGISTRY, Scenario, ScenarioRunner, cluster_lock, get_scenario, scenario

ENTRY = ContactInfo.entry_point("10.0.0.1", 8001, 8899)
CRED = FundedCredential("payer", 100, lambda *a: "tx")


def _runner(**kw):
    return ScenarioRunner(ENTRY, CRED, 3, **kw)


def test_results_per_scenario_and_run_continues():
    seen = []

    def passing(ep, cred, n): seen.append(("pass", ep, n))
    def failing(ep, cred, n): assert n == 99, "wrong node count"
    def broken(ep, cred, n): raise KeyError("boom")

    results = _runner().run([Scenario("a", failing), Scenario("b", broken), Scenario("c", passing)])

    assert [(r.name, r.status) for r in results] == [
        ("a", ScenarioStatus.FAILED),
        ("b", ScenarioStatus.ERROR),
        ("c", ScenarioStatus.PASSED),
    ]
    assert "wrong node count" in results[0].detail
    assert "KeyError" in results[1].detail
    assert seen == [("pass", ENTRY, 3)]


def test_register_and_lookup_by_name():
    @scenario("noop-for-test")
    def noop(ep, cred, n):
        pass

    try:
        assert get_scenario("noop-for-test").fn is noop
        assert _runner().run(["noop-for-test"])[0].ok
    finally:
        REGISTRY.pop("noop-for-test", None)


def test_builtin_flood_scenario_is_registered():
    sc = get_scenario("gossip_flood_liveness")
    assert sc.requires == {"rpc_gossip_push_enabled", "rpc_gossip_refresh_active_set_enabled"}
    with pytest.raises(KeyError):
        get_scenario("missing")


def test_unknown_required_surface_is_rejected():
    with pytest.raises(ValueError):
        scenario("bad", requires=("rpc_everything_enabled",))


def test_scenario_needing_disabled_surface_is_not_run():
    called = []
    sc = Scenario("needs-push", lambda *a: called.append(a), frozenset({"rpc_gossip_push_enabled"}))

    result = _runner(fullnode=FullnodeConfig()).run_one(sc)
    assert result.status is ScenarioStatus.ERROR
    assert "rpc_gossip_push_enabled" in result.detail
    assert called == []

    assert _runner(fullnode=FullnodeConfig(rpc_gossip_push_enabled=True)).run_one(sc).ok


def test_one_lock_per_cluster():
    other = ContactInfo.entry_point("10.9.9.9", 8001, 8899)
    assert cluster_lock(ENTRY) is cluster_lock(ContactInfo("any", ("10.0.0.1", 8001)))
    assert cluster_lock(ENTRY) is not cluster_lock(other)


def test_scenario_holds_cluster_lock_while_running():
    held = []
    sc = Scenario("probe", lambda *a: held.append(cluster_lock(ENTRY).locked()))
    _runner().run_one(sc)
    assert held == [True]
    assert not cluster_lock(ENTRY).locked()
