import asyncio

import pytest

from swarm_deployer.application.services.event_watcher import EventWatcher
from swarm_deployer.errors import EventFeedError
from swarm_deployer.models import ContainerEvent, ContainerHealth


def event(action: str, service_id: str = "svc-web", container_id: str = "c1") -> ContainerEvent:
    return ContainerEvent(
        action=action,
        container_id=container_id,
        container_name=f"web.1.{container_id}",
        service_id=service_id,
    )


@pytest.fixture
def watcher(control_plane, output, app_logger) -> EventWatcher:
    return EventWatcher(control_plane, output, app_logger, retry_interval=0.001)


@pytest.mark.asyncio
async def test_renders_lifecycle_events(watcher, output):
    for action in ("create", "start", "die", "health_status: healthy"):
        await watcher.handle_event(event(action), "svc-web")

    assert output.lines == [
        "swarm: creating container web.1.c1...",
        "swarm: starting container web.1.c1...",
        "swarm: container web.1.c1 stopped.",
        "swarm: container web.1.c1 is healthy.",
    ]


@pytest.mark.asyncio
async def test_ignores_other_services_and_actions(watcher, output):
    await watcher.handle_event(event("start", service_id="svc-db"), "svc-web")
    await watcher.handle_event(event("start", service_id=None), "svc-web")
    await watcher.handle_event(event("exec_create: ls"), "svc-web")

    assert output.lines == []


@pytest.mark.asyncio
async def test_unhealthy_adds_latest_health_output(watcher, control_plane, output):
    control_plane.container_health["c1"] = ContainerHealth(
        status="unhealthy", log=["first check", "curl: (7) connection refused"]
    )

    await watcher.handle_event(event("health_status: unhealthy"), "svc-web")

    assert output.lines == [
        "swarm: container web.1.c1 is unhealthy.",
        "swarm-deployer: health check error:\n curl: (7) connection refused",
    ]


@pytest.mark.asyncio
async def test_unhealthy_without_inspectable_container(watcher, output):
    await watcher.handle_event(event("health_status: unhealthy", container_id="gone"), "svc-web")

    assert output.lines == ["swarm: container web.1.gone is unhealthy."]


@pytest.mark.asyncio
async def test_watch_resubscribes_after_feed_error(watcher, control_plane, output):
    await control_plane.event_queue.put(event("create"))
    await control_plane.event_queue.put(EventFeedError("connection reset"))
    await control_plane.event_queue.put(event("start"))

    task = asyncio.create_task(watcher.watch("svc-web"))
    for _ in range(100):
        if len(output.lines) >= 3:
            break
        await asyncio.sleep(0.005)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert output.lines == [
        "swarm: creating container web.1.c1...",
        "swarm-deployer: event error: connection reset",
        "swarm: starting container web.1.c1...",
    ]
    assert control_plane.subscriptions == 2
    assert control_plane.closed_subscriptions == 2
