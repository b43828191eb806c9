import threading
import time

import pytest

from evidence_vault.core.common.errors import (
    CollaboratorBusy,
    CollaboratorUnavailable,
    ContentNotFound,
    FundingPending,
    PayloadTooLarge,
    TerminalCollaboratorError,
    ValidationError,
    error_category,
    is_retryable,
)
from evidence_vault.core.common.timeouts import TimeoutRunner


def test_retryable_classification():
    assert is_retryable(CollaboratorUnavailable("down"))
    assert is_retryable(FundingPending("no funds"))
    # Unknown failures are bounded by the attempt cap, not treated as terminal.
    assert is_retryable(RuntimeError("boom"))

    assert not is_retryable(TerminalCollaboratorError("bad cid"))
    assert not is_retryable(ContentNotFound("gone"))


def test_error_categories():
    assert error_category(FundingPending("x")) == "collaborator_unavailable"
    assert error_category(PayloadTooLarge("x")) == "payload_too_large"
    assert isinstance(PayloadTooLarge("x"), ValidationError)
    assert error_category(KeyError("x")) == "collaborator_unavailable"


def test_timeout_runner_returns_result():
    runner = TimeoutRunner(max_workers=1)
    try:
        assert runner.run(1.0, lambda a, b: a + b, 2, 3) == 5
    finally:
        runner.shutdown()


def test_timeout_runner_turns_overrun_into_collaborator_unavailable():
    runner = TimeoutRunner(max_workers=1)
    try:
        with pytest.raises(CollaboratorUnavailable, match="timed out"):
            runner.run(0.05, time.sleep, 0.5)
    finally:
        runner.shutdown()


def test_timeout_runner_propagates_collaborator_errors():
    def reject():
        raise TerminalCollaboratorError("rejected")

    runner = TimeoutRunner(max_workers=1)
    try:
        with pytest.raises(TerminalCollaboratorError):
            runner.run(1.0, reject)
    finally:
        runner.shutdown()


def test_deadline_starts_when_the_call_runs_not_when_it_is_queued():
    """
    Waiting for the single slot takes longer than the deadline, but the call
    itself fits inside it, so it must succeed.
    """
    runner = TimeoutRunner(max_workers=1, queue_timeout=5.0)
    occupied = threading.Event()

    def hold_slot():
        occupied.set()
        time.sleep(0.4)

    background = threading.Thread(target=runner.run, args=(2.0, hold_slot))
    background.start()
    try:
        assert occupied.wait(2.0)
        assert runner.run(0.3, lambda: time.sleep(0.1) or "done") == "done"
    finally:
        background.join()
        runner.shutdown()


def test_saturated_runner_rejects_without_calling():
    runner = TimeoutRunner(max_workers=1, name="pin", queue_timeout=0.05)
    release = threading.Event()
    occupied = threading.Event()
    calls = []

    def hold_slot():
        occupied.set()
        release.wait(5.0)

    background = threading.Thread(target=runner.run, args=(5.0, hold_slot))
    background.start()
    try:
        assert occupied.wait(2.0)
        assert runner.has_capacity() is False

        with pytest.raises(CollaboratorBusy, match="not attempted"):
            runner.run(1.0, calls.append, "never")
        assert calls == []
    finally:
        release.set()
        background.join()

    assert runner.has_capacity() is True
    runner.run(1.0, calls.append, "now")
    assert calls == ["now"]
    runner.shutdown()


def test_overrunning_call_keeps_its_slot_until_it_returns():
    runner = TimeoutRunner(max_workers=1, queue_timeout=0.0)
    try:
        with pytest.raises(CollaboratorUnavailable, match="timed out"):
            runner.run(0.05, time.sleep, 0.4)

        # The stray call is still running, so the pool is honestly full.
        assert runner.has_capacity() is False
        with pytest.raises(CollaboratorBusy):
            runner.run(1.0, lambda: None)

        deadline = time.monotonic() + 2
        while not runner.has_capacity() and time.monotonic() < deadline:
            time.sleep(0.02)
        assert runner.has_capacity() is True
    finally:
        runner.shutdown()


def test_collaborator_busy_is_retryable():
    assert is_retryable(CollaboratorBusy("full"))
    assert error_category(CollaboratorBusy("full")) == "collaborator_unavailable"
