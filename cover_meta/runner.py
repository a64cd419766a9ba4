from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Sequence, Union

from .models import Album, AudioFile, BatchReport, OperationOutcome, OutcomeStatus

logger = logging.getLogger(__name__)

Unit = Union[AudioFile, Album]
UnitResult = Union[OperationOutcome, BatchReport]


def unit_paths(unit: Unit) -> List[Path]:
    if isinstance(unit, Album):
        return [file.path for file in unit.files]
    return [unit.path]


class BatchRunner:
    """Runs independent units (files or albums) on a bounded worker pool.

    An asyncio queue feeds ``workers`` consumer tasks; each unit runs to
    completion on a thread of a pool of the same size. Once stopped, by an
    interrupt or a fail-fast failure, no further unit is started, while units
    already running finish their atomic commits before :meth:`run` returns.
    """

    def __init__(self, workers: int = 4, fail_fast: bool = False) -> None:
        self.workers = max(1, workers)
        self.fail_fast = fail_fast
        self.report = BatchReport()
        self._lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def run(self, units: Sequence[Unit], action: Callable[[Unit], UnitResult]) -> BatchReport:
        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="cover-meta")
        try:
            asyncio.run(self._dispatch(units, action, executor))
        except KeyboardInterrupt:
            self.stop()
            logger.warning("Interrupted; letting in-flight files finish")
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            self._record_not_started(units)
        return self.report

    async def _dispatch(
        self,
        units: Sequence[Unit],
        action: Callable[[Unit], UnitResult],
        executor: ThreadPoolExecutor,
    ) -> None:
        queue: asyncio.Queue[Unit] = asyncio.Queue()
        for unit in units:
            queue.put_nowait(unit)
        workers = [
            asyncio.create_task(self._worker(i, queue, action, executor))
            for i in range(min(self.workers, len(units)))
        ]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[Unit]",
        action: Callable[[Unit], UnitResult],
        executor: ThreadPoolExecutor,
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            unit = await queue.get()
            try:
                if not self.stopped:
                    await loop.run_in_executor(executor, self._execute, worker_id, unit, action)
            finally:
                queue.task_done()

    def _execute(self, worker_id: int, unit: Unit, action: Callable[[Unit], UnitResult]) -> None:
        if self.stopped:
            return
        try:
            result = action(unit)
        except Exception as exc:
            logger.exception("Worker %s failed to process %s", worker_id, unit_paths(unit))
            result = OperationOutcome(OutcomeStatus.FAILED, str(exc) or type(exc).__name__, "internal_error")
            if isinstance(unit, Album):
                report = BatchReport()
                for path in unit_paths(unit):
                    report.record(path, result)
                result = report
        self._record(unit, result)

    def _record(self, unit: Unit, result: UnitResult) -> None:
        with self._lock:
            if isinstance(result, BatchReport):
                self.report.merge(result)
                failed = bool(result.failed())
            else:
                self.report.record(unit.path, result)  # type: ignore[union-attr]
                failed = not result.ok
        if failed and self.fail_fast and not self.stopped:
            logger.error("Stopping after the first failure (fail-fast)")
            self.stop()

    def _record_not_started(self, units: Sequence[Unit]) -> None:
        with self._lock:
            for unit in units:
                for path in unit_paths(unit):
                    if path not in self.report:
                        self.report.record(path, OperationOutcome.skipped("not started"))
