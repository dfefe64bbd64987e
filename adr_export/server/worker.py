"""Supervised background execution for dispatched export jobs."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from adr_export.server.models import ExportJob, ExportOutcome

logger = logging.getLogger(__name__)


class ExportWorker:
    """Runs jobs off the request path and keeps every outcome observable.

    Jobs are independent; each one runs its own steps sequentially on one
    worker thread. A job that raises is logged and kept in `failed` instead
    of disappearing with its thread.
    """

    def __init__(self, run: Callable[[ExportJob], ExportOutcome], max_workers: int = 4) -> None:
        self._run = run
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)), thread_name_prefix="adr-export"
        )
        self._settled = threading.Condition()
        self._in_flight = 0
        self.completed: list[ExportOutcome] = []
        self.failed: list[tuple[ExportJob, BaseException]] = []

    def submit(self, job: ExportJob) -> Future:
        with self._settled:
            self._in_flight += 1
        future = self._executor.submit(self._run, job)
        future.add_done_callback(lambda done: self._on_done(job, done))
        return future

    def _on_done(self, job: ExportJob, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(f"Background export for {job.record_id} crashed: {exc!r}")
        with self._settled:
            if exc is None:
                self.completed.append(future.result())
            else:
                self.failed.append((job, exc))
            self._in_flight -= 1
            self._settled.notify_all()

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every submitted job has settled; False if the timeout expired first."""
        with self._settled:
            return self._settled.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def shutdown(self) -> None:
        self.join()
        self._executor.shutdown(wait=True)
