"""
Query batching for NerdGraph.

Queries queued within ``batch_timeout`` of each other, up to ``batch_size``,
are merged into one request. Each caller gets a future that resolves to the
``data`` its own query would have returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from ..config.models import BatchConfig
from .documents import BATCH_OPERATION_NAME, combine_queries, validate_batchable
from .models import GraphQLRequest, GraphQLResponse

logger = logging.getLogger(__name__)

BatchExecutor = Callable[[GraphQLRequest], Awaitable[GraphQLResponse]]


@dataclass
class _QueuedQuery:
    query: str
    variables: Optional[Mapping[str, Any]]
    future: "asyncio.Future[Dict[str, Any]]"


class BatchQueue:
    """
    Coalesces queries into combined requests.

    Examples:
        ```python
        queue = BatchQueue(client.execute)
        first = queue.queue_query("{ actor { user { name } } }")
        second = queue.queue_query("query($id: Int!) { actor { account(id: $id) { name } } }", {"id": 1})
        user, account = await asyncio.gather(first, second)
        ```
    """

    def __init__(self, executor: BatchExecutor, config: Optional[BatchConfig] = None):
        """
        Initialize the batch queue.

        Args:
            executor: Sends one request; normally the client's rate-limited,
                retrying ``execute``
            config: Batch size and flush timeout
        """
        self.executor = executor
        self.config = config or BatchConfig()

        self._queue: List[_QueuedQuery] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closed = False

        self._stats = {
            "total_queries": 0,
            "batches_executed": 0,
            "failed_batches": 0,
            "largest_batch": 0,
        }

    @property
    def pending(self) -> int:
        return len(self._queue)

    def queue_query(
        self, query: str, variables: Optional[Mapping[str, Any]] = None
    ) -> "asyncio.Future[Dict[str, Any]]":
        """
        Queue a query for the next batch.

        Args:
            query: A single-operation ``query`` document
            variables: Variables for the query

        Returns:
            Future resolving to this query's ``data``, or raising the error
            that failed its batch

        Raises:
            ValidationError: If the document cannot be batched
            RuntimeError: If the queue is closed
        """
        if self._closed:
            raise RuntimeError("BatchQueue is closed")
        validate_batchable(query)

        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Dict[str, Any]]" = loop.create_future()
        self._queue.append(_QueuedQuery(query, dict(variables or {}), future))
        self._stats["total_queries"] += 1

        if len(self._queue) >= self.config.batch_size:
            self._start_flush()
        elif self._timer is None:
            self._timer = loop.call_later(self.config.batch_timeout, self._start_flush)

        return future

    def _take_batch(self) -> List[_QueuedQuery]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._queue = self._queue, []
        return batch

    def _start_flush(self) -> None:
        batch = self._take_batch()
        if not batch:
            return
        task = asyncio.ensure_future(self._execute_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute_batch(self, batch: List[_QueuedQuery]) -> None:
        self._stats["largest_batch"] = max(self._stats["largest_batch"], len(batch))
        try:
            combined = combine_queries([(item.query, item.variables) for item in batch])
            response = await self.executor(
                GraphQLRequest(
                    query=combined.query,
                    variables=combined.variables,
                    operation_name=BATCH_OPERATION_NAME,
                )
            )
            results = combined.split(response.data)
        except Exception as e:
            self._stats["failed_batches"] += 1
            logger.error(f"Batch of {len(batch)} queries failed: {e}")
            for item in batch:
                if not item.future.done():
                    item.future.set_exception(e)
            return

        self._stats["batches_executed"] += 1
        logger.debug(f"Executed batch of {len(batch)} queries")
        for item, data in zip(batch, results):
            if not item.future.done():
                item.future.set_result(data)

    async def flush(self) -> None:
        """Send everything queued now and wait for all in-flight batches."""
        self._start_flush()
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        """Flush remaining work and refuse new queries."""
        self._closed = True
        await self.flush()
        logger.debug(
            f"Batch queue closed: total_queries={self._stats['total_queries']}, "
            f"batches_executed={self._stats['batches_executed']}"
        )

    def get_metrics(self) -> Dict[str, Any]:
        executed = self._stats["batches_executed"] + self._stats["failed_batches"]
        return {
            **self._stats,
            "pending": len(self._queue),
            "average_batch_size": (
                self._stats["total_queries"] - len(self._queue)
            ) / executed if executed else 0.0,
        }
