import threading
import time

import pytest

from imagereleaser.errors import CredentialBootstrapError, TaskError
from imagereleaser.models import BuildVariant, RenamingRecord, ServiceUnit
from imagereleaser.services.scheduler import FirstError, WorkScheduler


class DummyLogger:
    def __init__(self):
        self.errors = []

    def info(self, *_args, **_kwargs):
        return None

    def error(self, message, *args, **_kwargs):
        self.errors.append(message % args)


def _unit(name: str, variant: BuildVariant = BuildVariant.NATIVE) -> ServiceUnit:
    return ServiceUnit(name=name, variant=variant, source_locator=f"./cmd/{name}", tags=("latest",))


def _record(unit: ServiceUnit) -> RenamingRecord:
    return RenamingRecord(f"registry.local/{unit.name}", f"repo/{unit.name}@sha256:{unit.name}")


def _wait_until(predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_scheduler_never_exceeds_concurrency_bound():
    scheduler = WorkScheduler(logger=DummyLogger(), max_concurrency=2)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}
    gate = threading.Event()

    def task(unit):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        gate.wait(timeout=5)
        with lock:
            state["active"] -= 1
        return _record(unit)

    units = [_unit("a"), _unit("b"), _unit("c")]
    report_holder = {}
    runner = threading.Thread(target=lambda: report_holder.update(report=scheduler.run(units, task)))
    runner.start()

    assert _wait_until(lambda: state["active"] == 2)
    time.sleep(0.05)
    assert state["active"] == 2

    gate.set()
    runner.join(timeout=5)

    report = report_holder["report"]
    assert state["peak"] == 2
    assert sorted(record.old_reference for record in report.records) == [
        "registry.local/a",
        "registry.local/b",
        "registry.local/c",
    ]
    assert report.first_error is None


def test_scheduler_bound_holds_for_many_units():
    scheduler = WorkScheduler(logger=DummyLogger(), max_concurrency=3)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def task(unit):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1
        return _record(unit)

    report = scheduler.run([_unit(str(index)) for index in range(12)], task)

    assert state["peak"] <= 3
    assert len(report.records) == 12


def test_scheduler_runs_every_task_despite_failures():
    logger = DummyLogger()
    scheduler = WorkScheduler(logger=logger, max_concurrency=1)
    ran = []

    def task(unit):
        ran.append(unit.name)
        if unit.name == "b":
            raise TaskError(unit.name, "build", RuntimeError("compile error"))
        return _record(unit)

    report = scheduler.run([_unit("a"), _unit("b"), _unit("c")], task)

    assert ran == ["a", "b", "c"]
    assert len(report.records) == 2
    assert isinstance(report.first_error, TaskError)
    assert report.first_error.unit_name == "b"
    assert [outcome.unit_name for outcome in report.failures] == ["b"]
    assert any("b" in message for message in logger.errors)


def test_scheduler_surfaces_first_failure_in_completion_order():
    scheduler = WorkScheduler(logger=DummyLogger(), max_concurrency=2)
    fast_failed = threading.Event()

    def task(unit):
        if unit.name == "slow":
            fast_failed.wait(timeout=5)
            time.sleep(0.1)
            raise TaskError(unit.name, "publish", RuntimeError("push denied"))
        fast_failed.set()
        raise TaskError(unit.name, "digest", RuntimeError("no descriptors"))

    report = scheduler.run([_unit("slow"), _unit("fast")], task)

    assert report.first_error.unit_name == "fast"
    assert len(report.failures) == 2


def test_scheduler_bootstraps_once_before_external_tasks():
    scheduler = WorkScheduler(logger=DummyLogger(), max_concurrency=2)
    events = []
    lock = threading.Lock()

    def bootstrap():
        events.append("login")

    def task(unit):
        with lock:
            events.append(unit.name)
        return _record(unit)

    scheduler.run(
        [_unit("web", BuildVariant.EXTERNAL), _unit("worker", BuildVariant.EXTERNAL), _unit("api")],
        task,
        external_bootstrap=bootstrap,
    )

    assert events[0] == "login"
    assert events.count("login") == 1
    assert sorted(events[1:]) == ["api", "web", "worker"]


def test_scheduler_skips_bootstrap_without_external_units():
    scheduler = WorkScheduler(logger=DummyLogger())

    def bootstrap():
        raise AssertionError("bootstrap should only run for external builds")

    report = scheduler.run([_unit("api")], _record, external_bootstrap=bootstrap)

    assert len(report.records) == 1


def test_scheduler_bootstrap_failure_aborts_before_any_task():
    scheduler = WorkScheduler(logger=DummyLogger())
    ran = []

    def bootstrap():
        raise CredentialBootstrapError("login refused")

    with pytest.raises(CredentialBootstrapError):
        scheduler.run(
            [_unit("web", BuildVariant.EXTERNAL), _unit("api")],
            lambda unit: ran.append(unit.name),
            external_bootstrap=bootstrap,
        )

    assert ran == []


def test_scheduler_handles_empty_input():
    report = WorkScheduler(logger=DummyLogger()).run([], _record)

    assert report.records == []
    assert report.first_error is None


def test_scheduler_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        WorkScheduler(logger=DummyLogger(), max_concurrency=0)


def test_first_error_keeps_only_the_first_offer():
    holder = FirstError()
    first = RuntimeError("first")

    assert holder.offer(first) is True
    assert holder.offer(RuntimeError("second")) is False
    assert holder.error is first


def test_records_follow_submission_order_not_completion_order():
    scheduler = WorkScheduler(logger=DummyLogger(), max_concurrency=2)
    second_done = threading.Event()

    def task(unit):
        if unit.name == "a":
            assert second_done.wait(timeout=5)
        record = _record(unit)
        if unit.name == "b":
            second_done.set()
        return record

    report = scheduler.run([_unit("a"), _unit("b")], task)

    assert [record.old_reference for record in report.records] == [
        "registry.local/a",
        "registry.local/b",
    ]
