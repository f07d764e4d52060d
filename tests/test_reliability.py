"""
Tests for retry policy, signal handling and child-process ownership.
"""

import os
import signal

import pytest

from hwfix.adapters.mock import MockCommandRunner, MockProcess
from hwfix.core.engine.signals import ChildProcessSlot, signal_guard, signals_ignored
from hwfix.core.errors import PermanentFailure, TransientFailure, UserAbort, classify
from hwfix.core.reliability.retry import RetryPolicy

# ── Retry ───────────────────────────────────────────────────────────


class Flaky:
    def __init__(self, failures, exc=TransientFailure):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("mirror unreachable")
        return "done"


class TestRetryPolicy:
    def test_succeeds_after_transient_failures(self):
        delays = []
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=delays.append)

        assert policy.call(Flaky(2)) == ("done", 3)
        assert len(delays) == 2

    def test_exhausted_reraises_with_attempts(self):
        policy = RetryPolicy(max_attempts=2, base_delay=0.0, sleep=lambda _: None)
        with pytest.raises(TransientFailure) as exc:
            policy.call(Flaky(5))
        assert exc.value.attempts == 2

    def test_permanent_not_retried(self):
        fn = Flaky(1, exc=PermanentFailure)
        with pytest.raises(PermanentFailure):
            RetryPolicy(sleep=lambda _: None).call(fn)
        assert fn.calls == 1

    def test_backoff_grows_and_caps(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=5.0)
        assert 2.0 <= policy.delay_for(1) <= 2.6
        assert 4.0 <= policy.delay_for(2) <= 5.2
        assert 5.0 <= policy.delay_for(6) <= 6.5

    def test_once(self):
        assert RetryPolicy.once().max_attempts == 1


# ── Error classification ────────────────────────────────────────────


class TestClassify:
    def test_kinds(self):
        assert classify(TransientFailure("x", hint="h")) == ("transient", True, "h")
        assert classify(PermanentFailure("x")) == ("permanent", False, "")
        assert classify(UserAbort(2)) == ("abort", False, "")
        assert classify(PermissionError("denied")) == ("permanent", False, "Run with sudo.")
        assert classify(ValueError("x")) == ("permanent", False, "")

    def test_user_abort_escapes_exception_handlers(self):
        assert not isinstance(UserAbort(2), Exception)
        assert "signal 15" in str(UserAbort(15))


# ── Signals ─────────────────────────────────────────────────────────


class TestSignals:
    def test_guard_turns_sigterm_into_user_abort(self):
        with pytest.raises(UserAbort) as exc:
            with signal_guard():
                os.kill(os.getpid(), signal.SIGTERM)
        assert exc.value.signum == signal.SIGTERM

    def test_guard_restores_previous_handler(self):
        before = signal.getsignal(signal.SIGTERM)
        with signal_guard():
            pass
        assert signal.getsignal(signal.SIGTERM) == before

    def test_ignored_shields_block(self):
        with signals_ignored():
            assert signal.getsignal(signal.SIGINT) == signal.SIG_IGN
            os.kill(os.getpid(), signal.SIGINT)


# ── Child processes ─────────────────────────────────────────────────


class TestChildProcessSlot:
    def test_start_replaces_previous(self):
        runner = MockCommandRunner()
        slot = ChildProcessSlot(runner)

        first = slot.start(["qcam"])
        second = slot.start(["qcam"])

        assert first.terminated
        assert not second.terminated
        assert slot.running

    def test_ensure_reuses_running_child(self):
        slot = ChildProcessSlot(MockCommandRunner())
        proc = slot.ensure(["viewer"])
        assert slot.ensure(["viewer"]) is proc

    def test_context_manager_stops(self):
        runner = MockCommandRunner()
        with ChildProcessSlot(runner) as slot:
            proc = slot.start(["viewer"])
        assert proc.terminated
        assert not slot.running

    def test_kill_when_terminate_hangs(self):
        class Stubborn(MockProcess):
            def terminate(self):
                pass

            def wait(self, timeout=None):
                if self.returncode is None:
                    raise TimeoutError("still running")
                return self.returncode

        class Runner(MockCommandRunner):
            def spawn(self, args):
                proc = Stubborn(args)
                self._spawned.append(proc)
                return proc

        runner = Runner()
        slot = ChildProcessSlot(runner, grace=0)
        proc = slot.start(["viewer"])
        slot.stop()

        assert proc.returncode == -9
