# tests/unit/test_background.py
"""针对 `fluent_gateway.background` 的单元测试。"""

import asyncio

import pytest

from fluent_gateway.background import BackgroundTaskSupervisor


@pytest.mark.asyncio
async def test_spawned_tasks_are_tracked_until_done() -> None:
    supervisor = BackgroundTaskSupervisor()
    release = asyncio.Event()

    async def job() -> int:
        await release.wait()
        return 1

    task = supervisor.spawn(job(), name="job")
    assert supervisor.pending == 1

    release.set()
    assert await task == 1
    await asyncio.sleep(0)
    assert supervisor.pending == 0


@pytest.mark.asyncio
async def test_failed_task_is_logged_not_raised() -> None:
    supervisor = BackgroundTaskSupervisor()

    async def broken() -> None:
        raise RuntimeError("boom")

    supervisor.spawn(broken(), name="broken")
    await supervisor.drain()
    assert supervisor.pending == 0


@pytest.mark.asyncio
async def test_drain_waits_for_tasks_spawned_while_draining() -> None:
    supervisor = BackgroundTaskSupervisor()
    finished: list[str] = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent() -> None:
        await asyncio.sleep(0.01)
        supervisor.spawn(child(), name="child")
        finished.append("parent")

    supervisor.spawn(parent(), name="parent")
    await supervisor.drain()
    assert finished == ["parent", "child"]


@pytest.mark.asyncio
async def test_drain_timeout_leaves_tasks_running() -> None:
    supervisor = BackgroundTaskSupervisor()
    release = asyncio.Event()
    task = supervisor.spawn(release.wait(), name="slow")

    await supervisor.drain(timeout=0.01)
    assert not task.done()

    release.set()
    await supervisor.close()
    assert task.done()
    assert not task.cancelled()
