"""
后台任务队列

主动模式下适配器只负责把「推送本回合响应」封装为一个无参协程函数提交出去，
由队列在 HTTP 响应返回之后执行。任何实现了 submit() 的对象都可以替换默认实现。
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger("wechat-adapter")

WorkItem = Callable[[], Awaitable[None]]


class TaskQueue(Protocol):
    """提交异步工作单元的能力"""

    def submit(self, work: WorkItem) -> None: ...


class AsyncioTaskQueue:
    """
    基于 asyncio.Queue 的后台任务队列

    多个 worker 并发消费，不保证同一用户的任务顺序。
    工作单元抛出的异常会被记录，不会中断 worker。
    """

    def __init__(self, workers: int = 4, maxsize: int = 0):
        """
        Args:
            workers: 并发 worker 数
            maxsize: 队列容量，0 表示不限
        """
        if workers < 1:
            raise ValueError("workers 至少为 1")
        self.workers = workers
        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue(maxsize=maxsize)
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def submit(self, work: WorkItem) -> None:
        """提交工作单元，队列满时抛出 asyncio.QueueFull"""
        self._queue.put_nowait(work)
        logger.debug("后台任务已入队, 当前排队 %d 个", self._queue.qsize())

    async def _worker(self, index: int):
        while True:
            work = await self._queue.get()
            try:
                await work()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("后台任务 (worker %d) 执行失败", index)
            finally:
                self._queue.task_done()

    def start(self):
        """启动 worker，需在事件循环中调用"""
        if self._tasks:
            return
        for i in range(self.workers):
            task = asyncio.create_task(self._worker(i))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.info("后台任务队列已启动: %d 个 worker", self.workers)

    async def join(self, timeout: Optional[float] = None):
        """等待已提交的任务全部完成"""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def stop(self):
        """取消所有 worker，尚未执行的任务被丢弃"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.warning("后台任务队列已停止, 丢弃 %d 个未执行任务", dropped)
        else:
            logger.info("后台任务队列已停止")
