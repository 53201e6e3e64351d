"""Tests for single-flight command/response correlation."""

import threading

import pytest

from conftest import FakeTransport, run_in_thread, wait_for
from vmc_vendify_mcp.errors import (
    BusyError,
    ConnectionLostError,
    ResponseTimeoutError,
    TransportError,
    ValidationError,
)
from vmc_vendify_mcp.protocol.commands import DispenseCommand, SelfCheckCommand
from vmc_vendify_mcp.protocol.framing import build_response, decode_response
from vmc_vendify_mcp.session.correlator import Correlator, CorrelatorState, PendingRequest

OK = decode_response(build_response(0, 0x5D))


def _correlator(fake_timer, transport=None):
    transport = transport or FakeTransport()
    return Correlator(transport.write, lock=threading.RLock(), timer_factory=fake_timer), transport


def test_send_returns_matching_response(fake_timer):
    """The next valid response completes the pending command."""
    correlator, transport = _correlator(fake_timer)
    thread, outcome = run_in_thread(correlator.send, SelfCheckCommand(0))
    assert transport.write_event.wait(2)
    assert correlator.state is CorrelatorState.AWAITING_RESPONSE

    assert correlator.on_response(OK) is True
    thread.join(2)
    assert outcome["result"] is OK
    assert correlator.state is CorrelatorState.IDLE
    assert fake_timer.instances[0].cancelled


def test_frame_is_written(fake_timer):
    """begin() writes the encoded frame."""
    correlator, transport = _correlator(fake_timer)
    correlator.begin(DispenseCommand(3, 10))
    assert transport.written == [bytes([0x03, 0xFC, 0x0A, 0xF5, 0xAA, 0x55])]


def test_second_send_is_busy_and_leaves_first_untouched(fake_timer):
    """A busy send does not disturb the pending command."""
    correlator, transport = _correlator(fake_timer)
    first = correlator.begin(SelfCheckCommand(0))

    with pytest.raises(BusyError) as excinfo:
        correlator.send(SelfCheckCommand(1))
    assert excinfo.value.pending == SelfCheckCommand(0)
    assert len(transport.written) == 1
    assert correlator.pending is first
    assert not first.resolved

    correlator.on_response(OK)
    assert first.wait(1) is OK


def test_validation_error_changes_nothing(fake_timer):
    """An invalid command leaves the correlator idle."""
    correlator, transport = _correlator(fake_timer)
    with pytest.raises(ValidationError):
        correlator.begin(DispenseCommand(0, 0))
    assert correlator.state is CorrelatorState.IDLE
    assert transport.written == []
    assert fake_timer.instances == []


def test_deadline_resolves_with_timeout(fake_timer):
    """The deadline timer fails the command with a timeout."""
    correlator, _ = _correlator(fake_timer)
    pending = correlator.begin(SelfCheckCommand(0))
    fake_timer.instances[0].fire()

    with pytest.raises(ResponseTimeoutError) as excinfo:
        pending.wait(1)
    assert excinfo.value.command == SelfCheckCommand(0)
    assert excinfo.value.timeout == 5.0
    assert correlator.state is CorrelatorState.IDLE


def test_late_response_after_timeout_is_unsolicited(fake_timer):
    """A reply after the deadline is treated as unsolicited."""
    correlator, _ = _correlator(fake_timer)
    pending = correlator.begin(SelfCheckCommand(0))
    fake_timer.instances[0].fire()
    assert correlator.on_response(OK) is False
    with pytest.raises(ResponseTimeoutError):
        pending.wait(1)


def test_stale_timer_does_not_touch_next_request(fake_timer):
    """An old timer firing leaves the next command alone."""
    correlator, _ = _correlator(fake_timer)
    first = correlator.begin(SelfCheckCommand(0))
    correlator.on_response(OK)
    second = correlator.begin(SelfCheckCommand(1))

    fake_timer.instances[0].fire()
    assert not second.resolved
    assert first.wait(1) is OK


def test_timeout_uses_command_default_or_override(fake_timer):
    """Commands carry their own timeout unless overridden."""
    correlator, _ = _correlator(fake_timer)
    correlator.begin(DispenseCommand(0, 1))
    assert fake_timer.instances[-1].interval == 10.0
    correlator.connection_lost()
    correlator.begin(SelfCheckCommand(0), timeout=1.5)
    assert fake_timer.instances[-1].interval == 1.5
    assert fake_timer.instances[-1].daemon


def test_write_failure_resolves_with_transport_error(fake_timer):
    """A failed write ends the command with TransportError."""
    correlator, _ = _correlator(fake_timer, FakeTransport(fail_write=True))
    with pytest.raises(TransportError):
        correlator.send(SelfCheckCommand(0))
    assert correlator.state is CorrelatorState.IDLE
    assert fake_timer.instances[0].cancelled


def test_unexpected_write_error_returns_to_idle(fake_timer):
    """A non-OS write error propagates and does not leave the correlator busy."""
    def broken_write(frame):
        raise TypeError("write() argument must be bytes")

    correlator = Correlator(broken_write, timer_factory=fake_timer)
    with pytest.raises(TypeError):
        correlator.send(SelfCheckCommand(0))
    assert correlator.state is CorrelatorState.IDLE
    assert fake_timer.instances[0].cancelled

    fake_timer.instances[0].fire()
    assert correlator.state is CorrelatorState.IDLE


def test_connection_lost_resolves_pending(fake_timer):
    """Link loss fails the pending command once."""
    correlator, _ = _correlator(fake_timer)
    pending = correlator.begin(SelfCheckCommand(0))
    assert correlator.connection_lost() is True
    with pytest.raises(ConnectionLostError):
        pending.wait(1)
    assert correlator.connection_lost() is False


def test_unsolicited_response_when_idle(fake_timer):
    """A response with nothing pending changes nothing."""
    correlator, _ = _correlator(fake_timer)
    assert correlator.on_response(OK) is False
    assert correlator.state is CorrelatorState.IDLE


def test_response_racing_deadline_resolves_exactly_once(fake_timer):
    """Either outcome may win, but never both and never an exception."""
    correlator, _ = _correlator(fake_timer)
    for _ in range(200):
        pending = correlator.begin(SelfCheckCommand(0))
        timer = fake_timer.instances[-1]
        barrier = threading.Barrier(2)
        results = {}

        def respond():
            barrier.wait()
            results["response"] = correlator.on_response(OK)

        def expire():
            barrier.wait()
            timer.fire()

        threads = [threading.Thread(target=respond), threading.Thread(target=expire)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(2)

        assert pending.resolved
        assert correlator.state is CorrelatorState.IDLE
        try:
            outcome = pending.wait(1)
        except ResponseTimeoutError:
            assert results["response"] is False
        else:
            assert outcome is OK
            assert results["response"] is True


def test_real_timer_times_out():
    """The default threading.Timer enforces the deadline."""
    transport = FakeTransport()
    correlator = Correlator(transport.write)
    with pytest.raises(ResponseTimeoutError):
        correlator.send(SelfCheckCommand(0), timeout=0.05)
    assert wait_for(lambda: correlator.state is CorrelatorState.IDLE)


def test_pending_request_resolves_once():
    """Only the first resolution counts."""
    pending = PendingRequest(SelfCheckCommand(0), b"", 5.0)
    assert pending.resolve(response=OK) is True
    assert pending.resolve(error=ConnectionLostError("late")) is False
    assert pending.wait(0) is OK


def test_pending_request_requires_one_outcome():
    """resolve() needs exactly one of response or error."""
    pending = PendingRequest(SelfCheckCommand(0), b"", 5.0)
    with pytest.raises(ValueError):
        pending.resolve()
    with pytest.raises(ValueError):
        pending.resolve(response=OK, error=ConnectionLostError("both"))
