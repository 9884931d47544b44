"""
Tests for the run admission gate and event delivery
"""

import threading

import pytest

from db_sync_mysql.coordinator import ERROR, EventLog, RunCoordinator
from db_sync_mysql.errors import BusyError


def test_try_acquire_is_single_slot():
    coordinator = RunCoordinator()
    assert coordinator.try_acquire('data')
    assert not coordinator.try_acquire('structure')
    coordinator.release()
    assert coordinator.try_acquire('structure')
    coordinator.release()


def test_run_releases_after_error():
    coordinator = RunCoordinator()

    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        coordinator.run('data', boom)
    assert not coordinator.busy
    assert coordinator.run('data', lambda: 42) == 42


def test_second_request_rejected_while_first_runs(events):
    coordinator = RunCoordinator(events)
    started = threading.Event()
    finish = threading.Event()

    def slow():
        started.set()
        finish.wait(5)
        return 'first done'

    future = coordinator.submit('data', slow)
    assert started.wait(5)

    with pytest.raises(BusyError) as excinfo:
        coordinator.run('structure', lambda: 'second')
    assert excinfo.value.running == 'data'
    assert events.received[-1].kind == ERROR
    assert events.received[-1].operation == 'structure'

    finish.set()
    assert future.result(5) == 'first done'
    coordinator.shutdown()
    assert not coordinator.busy


def test_submit_releases_when_work_fails():
    coordinator = RunCoordinator()

    def boom():
        raise ValueError("bad")

    future = coordinator.submit('open', boom)
    with pytest.raises(ValueError):
        future.result(5)
    coordinator.shutdown()
    assert not coordinator.busy


def test_failing_subscriber_does_not_break_emit():
    log = EventLog()
    seen = []

    def broken(event):
        raise RuntimeError("ui gone")

    log.subscribe(broken)
    log.subscribe(seen.append)
    event = log.emit('open', "SSH connection successful.")
    assert seen == [event]
    assert str(event) == "> [open] SSH connection successful."
