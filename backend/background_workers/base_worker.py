
import asyncio
from typing import Any, Dict, Optional
from backend.background_workers.constants import logger

SENTINEL = None  # queue sentinel


class BaseWorker():
    """
    In-process queue consumer: `workers_count` loops pull items off one bounded
    asyncio.Queue and hand them to `task_executor()`. Subclasses implement the
    executor; handler errors are logged per item and never kill a loop.
    """

    name = "worker"

    def __init__(self, workers_count:int=1,max_queue_size: int = 1000):
        self.queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self.worker_loops:Dict[str, asyncio.Task] = {}
        self.workers_count:int=max(1, workers_count)
        self._processed = 0
        self._dropped = 0

    @property
    def running(self) -> bool:
        return bool(self.worker_loops)

    def start(self):
        """Start the worker loops as Tasks on the current event loop."""
        if not self.worker_loops:
            for i in range(self.workers_count):
                cur_worker_name=f"{self.name}:{i+1}"
                self.worker_loops[cur_worker_name]=asyncio.create_task(self._worker_loop(cur_worker_name))
                logger.info("[%s] started", cur_worker_name)

    def submit_nowait(self, item: Dict[str, Any]) -> bool:
        """Enqueue without waiting. Returns False (and counts a drop) when the queue is full."""
        try:
            self.queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            self._dropped += 1
            return False

    async def stop(self):
        """Send one sentinel per loop to ask the workers to exit."""
        for _ in range(len(self.worker_loops)):
            await self.queue.put(SENTINEL)

    async def shutdown(self, *, drain_first: bool = True, drain_timeout: float = 10.0, wait_timeout: float = 10.0):
        """
        Graceful stop: optionally wait for queue to drain, then send sentinels and await the tasks.
        """
        if not self.worker_loops:
            return

        if drain_first:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
                logger.debug("[%s] queue drained", self.name)
            except asyncio.TimeoutError:
                logger.warning("[%s] timeout waiting for queue to drain", self.name)

        await self.stop()

        for wname, w in self.worker_loops.items():
            try:
                await asyncio.wait_for(w, timeout=wait_timeout)
            except asyncio.TimeoutError:
                logger.warning("[%s] worker did not finish; cancelling", wname)
                w.cancel()
                try:
                    await asyncio.wait_for(w, timeout=5.0)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    logger.error("[%s] worker did not stop after cancel", wname)
        self.worker_loops.clear()

    async def _worker_loop(self,cur_worker_name):
        """Internal loop. Calls `task_executor()` for each non-sentinel item."""
        logger.debug("[%s] loop running", cur_worker_name)
        while True:
            qitem = await self.queue.get()
            try:
                if qitem is SENTINEL:
                    logger.debug("[%s] sentinel received; exiting loop", cur_worker_name)
                    break

                try:
                    await self.task_executor(qitem,cur_worker_name)
                    self._processed += 1
                except Exception:
                    logger.exception("[%s] handler threw for task", cur_worker_name)
            finally:
                # ALWAYS mark done for each get()
                self.queue.task_done()

        logger.debug("[%s] exiting", cur_worker_name)

    async def task_executor(self, task: Dict[str, Any],wname) -> None:
        raise NotImplementedError
