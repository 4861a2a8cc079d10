# fluent_gateway/background.py
"""
后台任务监督器。

响应返回之后仍需完成的工作 (缓存回写、配额回滚、成本记账、超时后继续运行的
AI 上下文生成) 都通过这里派发。任务被强引用在集合中直到完成，失败会被记录，
关闭时等待所有任务结束而不是取消它们。
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class BackgroundTaskSupervisor:
    def __init__(self) -> None:
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._closing = False

    @property
    def pending(self) -> int:
        return len(self._active_tasks)

    def spawn(self, coro: Coroutine[Any, Any, _T], *, name: str) -> asyncio.Task[_T]:
        """派发一个受监督的后台任务。"""
        if self._closing:
            logger.warning("监督器正在关闭，仍接受新的后台任务", task_name=name)
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._active_tasks.discard(task)
        if task.cancelled():
            logger.warning("后台任务被取消", task_name=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "后台任务执行失败",
                task_name=task.get_name(),
                error=f"{exc.__class__.__name__}: {exc}",
            )

    async def drain(self, timeout: float | None = None) -> None:
        """
        等待所有后台任务结束，包括等待期间新派发的任务。

        超时后不取消剩余任务，只记录数量。
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._active_tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning("等待后台任务超时", pending=len(self._active_tasks))
                return
            await asyncio.wait(set(self._active_tasks), timeout=remaining)

    async def close(self, timeout: float | None = 30.0) -> None:
        self._closing = True
        await self.drain(timeout)
        logger.info("后台任务监督器已关闭")
