"""Global active-token cap with a single-flight FIFO queue per token."""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Generic, List, TypeVar

from .errors import ServerBusyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _QueuedWork(Generic[T]):
    work: Callable[[], T]
    future: "Future[T]"


class AdmissionController:
    """Schedule units of work so a token never runs two at once.

    A token is *active* while it has queued or running work. New tokens are
    rejected with :class:`ServerBusyError` once ``max_active_tokens`` tokens
    are active; tokens that are already active always queue. Each active
    token owns one runner on the pool which drains its queue in submission
    order and is discarded once the queue is empty.
    """

    def __init__(
        self,
        *,
        max_active_tokens: int,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        if max_active_tokens < 1:
            raise ValueError("max_active_tokens must be at least 1")

        self._max_active = int(max_active_tokens)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._max_active, thread_name_prefix="discpack-token"
        )
        self._queues: Dict[str, Deque[_QueuedWork]] = {}
        self._lock = threading.Lock()

    @property
    def max_active_tokens(self) -> int:
        return self._max_active

    def active_tokens(self) -> List[str]:
        with self._lock:
            return sorted(self._queues)

    def is_active(self, token: str) -> bool:
        with self._lock:
            return token in self._queues

    def submit(self, token: str, work: Callable[[], T]) -> "Future[T]":
        """Queue ``work`` behind any earlier work for ``token``.

        Raises:
            ServerBusyError: If ``token`` is idle and the active-token ceiling
                has been reached. Nothing is queued in that case.
        """

        future: Future[T] = Future()
        entry = _QueuedWork(work=work, future=future)

        with self._lock:
            queue = self._queues.get(token)
            if queue is None:
                if len(self._queues) >= self._max_active:
                    raise ServerBusyError(
                        "Server is busy processing other packs. Try again shortly."
                    )
                queue = deque()
                self._queues[token] = queue
            queue.append(entry)
            start_runner = len(queue) == 1

        if start_runner:
            self._start_runner(token)
        return future

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _start_runner(self, token: str) -> None:
        try:
            self._executor.submit(self._drain, token)
        except Exception as exc:
            logger.error(
                "Could not start queue runner",
                extra={"token": token},
                exc_info=True,
            )
            with self._lock:
                pending = self._queues.pop(token, deque())
            for entry in pending:
                if not entry.future.done():
                    entry.future.set_exception(exc)

    def _drain(self, token: str) -> None:
        while True:
            with self._lock:
                queue = self._queues.get(token)
                if not queue:
                    self._queues.pop(token, None)
                    return
                entry = queue[0]

            if entry.future.set_running_or_notify_cancel():
                try:
                    result = entry.work()
                except BaseException as exc:
                    entry.future.set_exception(exc)
                else:
                    entry.future.set_result(result)

            with self._lock:
                queue.popleft()
                if not queue:
                    del self._queues[token]
                    return


__all__ = ["AdmissionController"]
