"""Bounded-concurrency dispatch of build-publish tasks."""

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from imagereleaser.constants import DEFAULT_MAX_CONCURRENCY
from imagereleaser.models import BuildVariant, RenamingRecord, ServiceUnit, TaskOutcome


class FirstError:
    """Holds the first error reported to it; later ones are ignored."""

    def __init__(self):
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    def offer(self, error: BaseException) -> bool:
        with self._lock:
            if self._error is not None:
                return False
            self._error = error
            return True

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error


@dataclass
class ScheduleReport:
    records: List[RenamingRecord] = field(default_factory=list)
    outcomes: List[TaskOutcome] = field(default_factory=list)
    first_error: Optional[BaseException] = None

    @property
    def failures(self) -> List[TaskOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]


class WorkScheduler:
    """Runs one task per service unit with at most ``max_concurrency`` in flight.

    Submission blocks while every slot is taken. A failing task never cancels
    its siblings: the scheduler waits for all of them and reports the first
    failure in completion order. Records come back in submission order.
    """

    def __init__(self, logger, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.logger = logger
        self.max_concurrency = max_concurrency

    def run(
        self,
        units: Sequence[ServiceUnit],
        task: Callable[[ServiceUnit], RenamingRecord],
        external_bootstrap: Optional[Callable[[], None]] = None,
    ) -> ScheduleReport:
        units = list(units)
        if not units:
            return ScheduleReport()

        # must finish before any external build starts pushing
        if external_bootstrap is not None and any(
            unit.variant is BuildVariant.EXTERNAL for unit in units
        ):
            external_bootstrap()

        results: "queue.Queue[Tuple[int, RenamingRecord]]" = queue.Queue(maxsize=len(units))
        first_error = FirstError()
        slots = threading.BoundedSemaphore(self.max_concurrency)
        futures: List[Future] = []

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix="imagereleaser",
        ) as executor:
            for index, unit in enumerate(units):
                slots.acquire()
                try:
                    future = executor.submit(self._run_one, index, unit, task, results, first_error)
                except BaseException:
                    slots.release()
                    raise
                future.add_done_callback(lambda _future: slots.release())
                futures.append(future)

            wait(futures)

        outcomes = [future.result() for future in futures]
        drained: List[Tuple[int, RenamingRecord]] = []
        while True:
            try:
                drained.append(results.get_nowait())
            except queue.Empty:
                break
        # submission order, not completion order
        records = [record for _index, record in sorted(drained, key=lambda item: item[0])]

        report = ScheduleReport(records=records, outcomes=outcomes, first_error=first_error.error)
        self.logger.info(
            "Finished %s task(s): %s succeeded, %s failed",
            len(outcomes),
            len(records),
            len(report.failures),
        )
        return report

    def _run_one(
        self,
        index: int,
        unit: ServiceUnit,
        task: Callable[[ServiceUnit], RenamingRecord],
        results: "queue.Queue[Tuple[int, RenamingRecord]]",
        first_error: FirstError,
    ) -> TaskOutcome:
        try:
            record = task(unit)
        except Exception as exc:
            first_error.offer(exc)
            self.logger.error("Service %s failed: %s", unit.name, exc)
            return TaskOutcome(unit_name=unit.name, error=exc)

        results.put_nowait((index, record))
        return TaskOutcome(unit_name=unit.name, record=record)
