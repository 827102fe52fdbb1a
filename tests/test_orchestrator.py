"""Tests for orchestrator module."""

import asyncio

import pytest

from vpn_connection_manager.exceptions import (
    CommandError,
    OperationError,
    OperationTimeoutError,
    StabilizationError,
    StatusError,
)
from vpn_connection_manager.models import CONNECTED, DISCONNECTED, VpnStatus
from vpn_connection_manager.orchestrator import OperationOrchestrator
from vpn_connection_manager.reconcile import ReconciliationLoop

# ── connect: happy path ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_connect_confirms_against_probe(orchestrator, actuator, profile, fast_config):
    record = await orchestrator.connect(profile, fast_config())
    assert record.status == CONNECTED
    assert record.ip_address == "10.0.0.5"
    assert record.connected_since is not None
    assert actuator.connect_calls == ["office"]


@pytest.mark.asyncio
async def test_connect_reports_final_status(orchestrator, profile, fast_config):
    progress = []
    await orchestrator.connect(profile, fast_config(), progress.append)
    assert progress == [CONNECTED]


@pytest.mark.asyncio
async def test_connect_waits_for_slow_tunnel(
    orchestrator, probe, actuator, profile, fast_config
):
    actuator.connect_takes_effect = False

    def _up(p):
        p.active["office"] = "10.0.0.5"

    # 1: conflict check, 2-3: still down, 4: up
    probe.hooks = {4: _up}
    record = await orchestrator.connect(profile, fast_config(attempt_timeout=1.0))
    assert record.status == CONNECTED
    assert actuator.connect_calls == ["office"]
    assert probe.list_calls == 4


@pytest.mark.asyncio
async def test_progress_callback_errors_are_ignored(orchestrator, profile, fast_config):
    def _bad(status):
        raise ValueError("ui gone")

    record = await orchestrator.connect(profile, fast_config(), _bad)
    assert record.status == CONNECTED


# ── connect: retries and timeouts ──────────────────────────────────


@pytest.mark.asyncio
async def test_connect_times_out(orchestrator, actuator, profile, fast_config):
    actuator.connect_takes_effect = False
    progress = []

    with pytest.raises(OperationTimeoutError) as err:
        await orchestrator.connect(
            profile, fast_config(attempt_timeout=0.05, max_retries=0), progress.append
        )

    assert err.value.attempts == 1
    assert "timed out waiting for connected" in str(err.value)
    assert actuator.connect_calls == ["office"]
    assert progress[-1].is_error


@pytest.mark.asyncio
async def test_connect_retries_every_attempt(orchestrator, actuator, profile, fast_config):
    actuator.connect_takes_effect = False
    progress = []

    with pytest.raises(OperationTimeoutError) as err:
        await orchestrator.connect(
            profile, fast_config(attempt_timeout=0.03), progress.append
        )

    assert err.value.attempts == 3
    assert str(err.value).startswith("Failed to connect to office after 3 attempts")
    assert actuator.connect_calls == ["office"] * 3
    assert progress[:2] == [VpnStatus.retrying(2, 3), VpnStatus.retrying(3, 3)]


@pytest.mark.asyncio
async def test_connect_actuator_failures_exhaust_retries(
    orchestrator, actuator, profile, fast_config
):
    actuator.connect_failures = ["gateway unreachable"] * 3

    with pytest.raises(OperationError) as err:
        await orchestrator.connect(profile, fast_config())

    assert not isinstance(err.value, OperationTimeoutError)
    assert str(err.value) == (
        "Failed to connect to office after 3 attempts: gateway unreachable"
    )
    assert actuator.connect_calls == ["office"] * 3


@pytest.mark.asyncio
async def test_connect_succeeds_on_retry(orchestrator, actuator, profile, fast_config):
    actuator.connect_failures = ["gateway unreachable"]
    progress = []

    record = await orchestrator.connect(profile, fast_config(), progress.append)

    assert record.status == CONNECTED
    assert actuator.connect_calls == ["office", "office"]
    assert progress == [VpnStatus.retrying(2, 3), CONNECTED]


@pytest.mark.asyncio
async def test_connect_succeeds_on_third_attempt(orchestrator, actuator, profile, fast_config):
    actuator.connect_failures = ["gateway unreachable", "gateway unreachable"]

    record = await orchestrator.connect(profile, fast_config(max_retries=2))

    assert record.status == CONNECTED
    assert actuator.connect_calls == ["office"] * 3


@pytest.mark.asyncio
async def test_connect_timeout_of_two_poll_intervals(
    orchestrator, actuator, profile, fast_config
):
    actuator.connect_takes_effect = False
    config = fast_config(attempt_timeout=0.02, poll_interval=0.01, max_retries=0)

    with pytest.raises(OperationTimeoutError):
        await asyncio.wait_for(orchestrator.connect(profile, config), timeout=2.0)


@pytest.mark.asyncio
async def test_connect_error_status_stops_immediately(
    orchestrator, store, probe, actuator, profile, fast_config
):
    def _error(p):
        store.set("office", VpnStatus.error("Service unavailable"))
        raise CommandError("nmcli crashed")

    # 1: conflict check, 2: first poll
    probe.hooks = {2: _error}
    progress = []

    with pytest.raises(StatusError) as err:
        await orchestrator.connect(profile, fast_config(), progress.append)

    assert "Service unavailable" in str(err.value)
    assert actuator.connect_calls == ["office"]
    assert progress[-1].message == "Service unavailable"


@pytest.mark.asyncio
async def test_hung_command_is_left_running(orchestrator, actuator, profile, fast_config):
    release = asyncio.Event()

    async def _hang(p):
        await release.wait()

    actuator.request_connect = _hang

    with pytest.raises(OperationTimeoutError):
        await orchestrator.connect(profile, fast_config(attempt_timeout=0.03, max_retries=0))

    assert orchestrator.pending_operations == 1
    release.set()
    await asyncio.sleep(0.01)
    assert orchestrator.pending_operations == 0


# ── connect: stabilization ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_stabilization_passes(orchestrator, probe, profile, fast_config):
    record = await orchestrator.connect(profile, fast_config(stabilization_samples=5))
    assert record.status == CONNECTED
    # conflict check, one poll, five samples
    assert probe.list_calls == 7


@pytest.mark.asyncio
async def test_stabilization_drop_fails_operation(
    orchestrator, probe, actuator, profile, fast_config
):
    def _drop(p):
        p.active.pop("office", None)

    # 1: conflict check, 2: poll, 3-7: samples; third sample sees the drop
    probe.hooks = {5: _drop}
    progress = []

    with pytest.raises(StabilizationError) as err:
        await orchestrator.connect(
            profile, fast_config(stabilization_samples=5), progress.append
        )

    assert "sample 3/5" in str(err.value)
    assert actuator.connect_calls == ["office"]
    assert progress[-1].is_error


@pytest.mark.asyncio
async def test_stabilization_disconnects_intruder(
    orchestrator, store, probe, actuator, profile, fast_config
):
    def _intrude(p):
        p.active["home"] = "10.1.0.2"

    probe.hooks = {4: _intrude}
    record = await orchestrator.connect(profile, fast_config(stabilization_samples=3))

    assert record.status == CONNECTED
    assert actuator.disconnect_calls == ["home"]
    assert store.get_status("home") == DISCONNECTED
    assert probe.active == {"office": "10.0.0.5"}


@pytest.mark.asyncio
async def test_stabilization_intruder_that_stays_fails(
    orchestrator, probe, actuator, profile, fast_config
):
    def _intrude(p):
        p.active["home"] = "10.1.0.2"

    probe.hooks = {3: _intrude}
    actuator.disconnect_failures = ["Failed to disconnect: busy"]

    with pytest.raises(StabilizationError, match="home stayed active"):
        await orchestrator.connect(profile, fast_config(stabilization_samples=3))


@pytest.mark.asyncio
async def test_stabilization_intruder_ignoring_disconnect_fails(
    orchestrator, probe, actuator, profile, fast_config
):
    def _intrude(p):
        p.active["home"] = "10.1.0.2"

    async def _ignore(name):
        actuator.disconnect_calls.append(name)

    # 1: conflict check, 2: poll, 3-7: samples; first sample sees home
    probe.hooks = {3: _intrude}
    actuator.request_disconnect = _ignore

    with pytest.raises(StabilizationError, match="home stayed active alongside office"):
        await orchestrator.connect(
            profile, fast_config(stabilization_samples=5, max_retries=0)
        )

    assert actuator.disconnect_calls == ["home"]
    assert probe.list_calls == 4


@pytest.mark.asyncio
async def test_stabilization_intruder_on_last_sample_checked_after_window(
    orchestrator, probe, actuator, profile, fast_config
):
    def _intrude(p):
        p.active["home"] = "10.1.0.2"

    async def _ignore(name):
        actuator.disconnect_calls.append(name)

    # 1: conflict check, 2: poll, 3-5: samples, 6: end-of-window check
    probe.hooks = {5: _intrude}
    actuator.request_disconnect = _ignore

    with pytest.raises(StabilizationError, match="after being disconnected"):
        await orchestrator.connect(
            profile, fast_config(stabilization_samples=3, max_retries=0)
        )

    assert actuator.disconnect_calls == ["home"]
    assert probe.list_calls == 6


@pytest.mark.asyncio
async def test_no_stabilization_for_disconnect(
    orchestrator, probe, actuator, fast_config
):
    probe.active = {"office": "10.0.0.5"}
    await orchestrator.disconnect("office", fast_config(stabilization_samples=5))
    # one poll only
    assert probe.list_calls == 1


# ── disconnect ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_disconnect_confirms(orchestrator, store, probe, actuator, fast_config):
    probe.active = {"office": "10.0.0.5"}
    store.set("office", CONNECTED)
    progress = []

    record = await orchestrator.disconnect("office", fast_config(), progress.append)

    assert record.status == DISCONNECTED
    assert actuator.disconnect_calls == ["office"]
    assert progress == [DISCONNECTED]


@pytest.mark.asyncio
async def test_disconnect_retries_failed_request(
    orchestrator, probe, actuator, fast_config
):
    probe.active = {"office": "10.0.0.5"}
    actuator.disconnect_failures = ["Failed to disconnect: busy"]
    progress = []

    record = await orchestrator.disconnect("office", fast_config(), progress.append)

    assert record.status == DISCONNECTED
    assert actuator.disconnect_calls == ["office", "office"]
    assert progress == [VpnStatus.retrying(2, 3), DISCONNECTED]


@pytest.mark.asyncio
async def test_disconnect_times_out_when_tunnel_stays(
    orchestrator, probe, actuator, fast_config
):
    probe.active = {"office": "10.0.0.5"}

    async def _ignore(name):
        actuator.disconnect_calls.append(name)

    actuator.request_disconnect = _ignore

    with pytest.raises(OperationTimeoutError) as err:
        await orchestrator.disconnect(
            "office", fast_config(attempt_timeout=0.03, max_retries=0)
        )

    assert "timed out waiting for disconnected" in str(err.value)
    assert err.value.profile_name == "office"


@pytest.mark.asyncio
async def test_profile_names_are_reconciled(controller, reconciler, store, profile, fast_config):
    orchestrator = OperationOrchestrator(controller, reconciler, lambda: ["office", "home"])
    await orchestrator.connect(profile, fast_config())
    assert store.get_status("home") == DISCONNECTED
    assert "home" in store
    assert store.get_status("office") == CONNECTED


@pytest.mark.asyncio
async def test_polling_reports_drops_except_own_profile(
    controller, store, probe, actuator, profile, fast_config
):
    lost = []

    async def _lost(name):
        lost.append(name)

    reconciler = ReconciliationLoop(store, probe, on_connection_lost=_lost)
    orchestrator = OperationOrchestrator(controller, reconciler)
    actuator.connect_takes_effect = False
    store.set("lab", CONNECTED)

    def _up(p):
        p.active["office"] = "10.0.0.5"

    # office reads Connected after the request but is not up until call 4
    probe.hooks = {4: _up}
    record = await orchestrator.connect(profile, fast_config(attempt_timeout=1.0))

    assert record.status == CONNECTED
    assert lost == ["lab"]
