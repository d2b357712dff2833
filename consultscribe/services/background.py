"""Background runner for fire-and-forget calls to the external services."""

import time
import asyncio
import logging
import threading
import queue
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class BackgroundTask(NamedTuple):
    """A coroutine to run off the caller's thread, plus its completion handlers."""
    name: str
    coroutine_factory: Callable[[], Awaitable[Any]]
    on_success: Callable[[Any], None]
    on_failure: Callable[[BaseException], None]


class BackgroundWorker:
    """Runs queued coroutines on worker threads, each with its own asyncio loop.

    Completion handlers are invoked on the worker thread; they are expected
    to post the result back into the component that owns the state.
    """

    def __init__(self, name: str = "background", max_concurrent_threads: int = 1):
        self.name = name
        self.max_concurrent_threads = max_concurrent_threads
        self.task_queue: "queue.Queue[Optional[BackgroundTask]]" = queue.Queue()
        self.worker_threads: List[threading.Thread] = []
        self.shutdown_event = threading.Event()
        self._start_workers()

    def _start_workers(self) -> None:
        for i in range(self.max_concurrent_threads):
            thread = threading.Thread(target=self._worker_loop, daemon=True)
            thread.name = f"worker_{self.name}_{i}"
            thread.start()
            self.worker_threads.append(thread)
        logger.info(f"Started {len(self.worker_threads)} {self.name} workers")

    def _worker_loop(self) -> None:
        thread_name = threading.current_thread().name
        logger.debug(f"Worker thread {thread_name} starting")

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            while True:
                task = self.task_queue.get()

                if task is None:
                    logger.debug(f"Worker {thread_name} received sentinel, exiting.")
                    self.task_queue.task_done()
                    break

                logger.debug(f"Worker {thread_name} running task {task.name}")
                try:
                    self._run_task(loop, task)
                finally:
                    self.task_queue.task_done()
        finally:
            loop.close()
            logger.debug(f"Worker thread {thread_name} exiting and closing its event loop.")

    def _run_task(self, loop: asyncio.AbstractEventLoop, task: BackgroundTask) -> None:
        try:
            result = loop.run_until_complete(task.coroutine_factory())
        except Exception as e:
            logger.warning(f"Background task {task.name} failed: {e}")
            handler, argument = task.on_failure, e
        else:
            handler, argument = task.on_success, result

        try:
            handler(argument)
        except Exception as e:
            logger.error(f"Unhandled exception in completion handler of {task.name}: {e}", exc_info=True)

    def submit(self, name: str,
               coroutine_factory: Callable[[], Awaitable[Any]],
               on_success: Callable[[Any], None],
               on_failure: Callable[[BaseException], None]) -> bool:
        """Queue a coroutine. Returns False if the worker is shutting down."""
        if self.shutdown_event.is_set():
            logger.warning(f"Rejected task {name}: {self.name} worker is shut down")
            return False
        self.task_queue.put(BackgroundTask(name, coroutine_factory, on_success, on_failure))
        return True

    def wait_until_idle(self, timeout: float = 30.0) -> bool:
        """Block until every queued task and its handler has finished."""
        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.task_queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        logger.warning(f"[{self.name}] {self.task_queue.unfinished_tasks} tasks still pending after {timeout}s")
        return False

    def shutdown(self, timeout: float = 30.0) -> bool:
        """Let queued tasks finish, then stop the worker threads."""
        if self.shutdown_event.is_set():
            return True
        logger.info(f"Shutting down {self.name} worker...")
        self.shutdown_event.set()

        drained = self.wait_until_idle(timeout)

        for _ in self.worker_threads:
            self.task_queue.put(None)

        current = threading.current_thread()
        for thread in self.worker_threads:
            if thread is current:
                continue
            thread.join(2.0)
            if thread.is_alive():
                logger.warning(f"Worker thread {thread.name} did not terminate cleanly.")

        logger.info(f"{self.name} worker shutdown complete.")
        return drained

    def get_pending_task_count(self) -> int:
        return self.task_queue.qsize()
