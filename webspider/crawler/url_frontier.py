"""
URL Frontier: the breadth-first work queue shared by all crawl workers.

The frontier owns the visited set. Admission (dedup check + insert + enqueue)
is a single step under the frontier's condition, so two workers discovering
the same URL can never both enqueue it. Termination is detected with a live
counter of queued plus in-flight tasks.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Set


@dataclass(frozen=True)
class CrawlTask:
    """A URL to crawl together with its distance from the origin."""
    url: str
    depth: int
    parent_url: Optional[str] = None

    def child(self, url: str) -> 'CrawlTask':
        """Build the task for a link discovered on this page."""
        return CrawlTask(url=url, depth=self.depth + 1, parent_url=self.url)


class URLFrontier:
    """
    FIFO queue of CrawlTasks with exactly-once admission.

    Workers call take() to claim the oldest task and task_done() once its
    result has been recorded. When no task is queued or in flight the
    frontier closes itself and every blocked take() returns None.
    """

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.logger = logging.getLogger(__name__)

        self._queue: Deque[CrawlTask] = deque()
        self._visited: Set[str] = set()
        self._live = 0
        self._closed = False
        self._condition = asyncio.Condition()

        self.stats = {
            'offered': 0,
            'admitted': 0,
            'rejected_depth': 0,
            'rejected_duplicate': 0,
            'rejected_closed': 0
        }

    async def offer(self, task: CrawlTask) -> bool:
        """
        Admit a task if it is within depth and its URL was never admitted.

        Returns True if the task was enqueued.
        """
        async with self._condition:
            self.stats['offered'] += 1

            if self._closed:
                self.stats['rejected_closed'] += 1
                return False

            if task.depth < 0 or task.depth > self.max_depth:
                self.stats['rejected_depth'] += 1
                self.logger.debug(f"Rejected beyond max depth ({task.depth}): {task.url}")
                return False

            if task.url in self._visited:
                self.stats['rejected_duplicate'] += 1
                return False

            self._visited.add(task.url)
            self._queue.append(task)
            self._live += 1
            self.stats['admitted'] += 1
            self._condition.notify()

        self.logger.debug(f"Added URL to frontier (depth {task.depth}): {task.url}")
        return True

    async def take(self) -> Optional[CrawlTask]:
        """
        Claim the oldest queued task.

        Blocks while the queue is empty and work is still in flight. Returns
        None once the frontier is closed.
        """
        async with self._condition:
            while not self._queue and not self._closed:
                await self._condition.wait()

            if self._closed:
                return None

            return self._queue.popleft()

    async def task_done(self):
        """Mark a claimed task as fully processed and recorded."""
        async with self._condition:
            if self._live <= 0:
                raise RuntimeError("task_done() called more times than tasks were admitted")

            self._live -= 1
            if self._live == 0 and not self._queue:
                self.logger.debug("Frontier exhausted")
                self._close_locked()

    async def close(self):
        """Stop accepting work and wake all waiting workers. Idempotent."""
        async with self._condition:
            self._close_locked()

    def _close_locked(self):
        if not self._closed:
            self._closed = True
            self._condition.notify_all()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def is_visited(self, url: str) -> bool:
        return url in self._visited

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            'queued': len(self._queue),
            'in_flight': self._live - len(self._queue),
            'visited': len(self._visited),
            **self.stats
        }
