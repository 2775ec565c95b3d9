import asyncio

import pytest

from swarm_deployer.application.cancellation import CancellationToken
from swarm_deployer.application.services.event_watcher import EventWatcher
from swarm_deployer.application.services.rollout_monitor import RolloutMonitor
from swarm_deployer.application.services.wait_coordinator import WaitCoordinator
from swarm_deployer.models import ServiceHandle, TaskSummary

HANDLE = ServiceHandle(id="svc-web", name="web", version=2)


class CrashingMonitor(RolloutMonitor):
    async def run(self, handle, done):
        raise RuntimeError("monitor exploded")


@pytest.fixture
def coordinator(control_plane, output, app_logger) -> WaitCoordinator:
    watcher = EventWatcher(control_plane, output, app_logger, retry_interval=0.001)
    monitor = RolloutMonitor(control_plane, output, app_logger, poll_interval=0.001)
    return WaitCoordinator(watcher, monitor, app_logger)


@pytest.mark.asyncio
async def test_returns_rollout_outcome(coordinator, control_plane):
    control_plane.status_script = ["updating", "completed"]

    outcome = await asyncio.wait_for(coordinator.wait(HANDLE), timeout=2)

    assert outcome.status == "success"
    assert control_plane.closed_subscriptions == control_plane.subscriptions


@pytest.mark.asyncio
async def test_interrupt_cancels_both_tasks(coordinator, control_plane):
    control_plane.status_script = ["updating"]
    interrupt = CancellationToken()
    context = CancellationToken()
    asyncio.get_running_loop().call_later(0.02, interrupt.cancel, "SIGINT")

    outcome = await asyncio.wait_for(
        coordinator.wait(HANDLE, interrupt=interrupt, context=context), timeout=2
    )

    assert outcome.status == "cancelled"
    assert outcome.reason == "deployment cancelled"
    assert outcome.cancelled
    calls = control_plane.inspect_calls
    await asyncio.sleep(0.02)
    assert control_plane.inspect_calls == calls
    assert control_plane.closed_subscriptions == control_plane.subscriptions


@pytest.mark.asyncio
async def test_context_cancellation(coordinator, control_plane):
    control_plane.status_script = ["updating"]
    context = CancellationToken()
    context.cancel("timeout")

    outcome = await asyncio.wait_for(
        coordinator.wait(HANDLE, interrupt=CancellationToken(), context=context), timeout=2
    )

    assert outcome.status == "context_cancelled"
    assert outcome.reason == "context cancelled"


@pytest.mark.asyncio
async def test_interrupt_wins_over_context(coordinator, control_plane):
    control_plane.status_script = ["updating"]
    interrupt = CancellationToken()
    context = CancellationToken()
    interrupt.cancel()
    context.cancel()

    outcome = await asyncio.wait_for(
        coordinator.wait(HANDLE, interrupt=interrupt, context=context), timeout=2
    )

    assert outcome.status == "cancelled"


@pytest.mark.asyncio
async def test_monitor_crash_yields_failed_outcome(control_plane, output, app_logger):
    watcher = EventWatcher(control_plane, output, app_logger, retry_interval=0.001)
    monitor = CrashingMonitor(control_plane, output, app_logger, poll_interval=0.001)
    coordinator = WaitCoordinator(watcher, monitor, app_logger)

    outcome = await asyncio.wait_for(coordinator.wait(HANDLE), timeout=2)

    assert outcome.status == "failed"
    assert outcome.reason == "monitor exploded"


@pytest.mark.asyncio
async def test_cancelling_the_wait_stops_subordinate_tasks(coordinator, control_plane):
    control_plane.status_script = ["updating"]
    waiting = asyncio.create_task(coordinator.wait(HANDLE))
    await asyncio.sleep(0.02)

    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting

    calls = control_plane.inspect_calls
    await asyncio.sleep(0.02)
    assert control_plane.inspect_calls == calls
    assert control_plane.closed_subscriptions == control_plane.subscriptions


@pytest.mark.asyncio
async def test_until_running_resolves_on_running_task(coordinator, control_plane):
    control_plane.tasks = [
        TaskSummary(id="t1", service_id="svc-web", state="running", desired_state="running")
    ]

    outcome = await asyncio.wait_for(coordinator.wait(HANDLE, until_running=True), timeout=2)

    assert outcome.status == "success"
    assert control_plane.inspect_calls == 0
