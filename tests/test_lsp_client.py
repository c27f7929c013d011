"""Tests for the LSP transport client."""

import sys
import threading
import time
from pathlib import Path
import pytest
from review_lens.errors import LspCancelledError, LspClosedError, LspError, LspTimeoutError
from review_lens.lsp.client import LspClient


FAKE_SERVER = str(Path(__file__).parent / 'fake_lsp_server.py')


def make_client(mode, *extra, timeout=5.0, cancel_event=None):
    return LspClient(sys.executable, [FAKE_SERVER, mode, *extra], timeout=timeout, cancel_event=cancel_event)


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_call_returns_result():
    """A request gets back the result for its own id."""
    with make_client('echo') as client:
        result = client.call('initialize', {"rootUri": "file:///tmp"})

    assert result == {"method": "initialize", "params": {"rootUri": "file:///tmp"}}


def test_sequential_ids_and_pending_cleanup():
    """Every completed call leaves the pending table empty."""
    with make_client('echo') as client:
        for i in range(5):
            assert client.call('ping', {"n": i})["params"] == {"n": i}
            assert client.pending_count == 0


def test_concurrent_calls_are_not_cross_delivered():
    """Responses arriving out of order still reach their own callers."""
    results = {}

    with make_client('echo') as client:
        def held_call():
            results['held'] = client.call('first', {"hold": True, "tag": "a"})

        thread = threading.Thread(target=held_call)
        thread.start()
        assert wait_for(lambda: client.pending_count == 1)
        time.sleep(0.1)

        results['release'] = client.call('second', {"release": True, "tag": "b"})
        thread.join(timeout=5)

    assert results['release'] == {"method": "second", "params": {"release": True, "tag": "b"}}
    assert results['held'] == {"method": "first", "params": {"hold": True, "tag": "a"}}


def test_unmatched_and_malformed_frames_are_dropped():
    """Orphan responses, garbage frames and server requests do not disturb a call."""
    with make_client('echo') as client:
        # id 1 collides with the server-initiated request the stub sends first
        result = client.call('noisy', {"noise": True})
        assert result == {"method": "noisy", "params": {"noise": True}}

        # The reader is still healthy afterwards
        assert client.call('after', {})["method"] == 'after'
        assert client.pending_count == 0


def test_server_configuration_request_is_answered():
    """workspace/configuration gets one empty object per requested item."""
    with make_client('echo') as client:
        client.call('noisy', {"noise": True})
        responses = client.call('debug/responses')

    assert responses == [{"jsonrpc": "2.0", "id": 1, "result": [{}]}]


def test_timeout_removes_pending_entry():
    """A call with no answer times out and does not leak its registration."""
    with make_client('silent', timeout=0.3) as client:
        assert client.pending_count == 0

        started = time.monotonic()
        with pytest.raises(LspTimeoutError):
            client.call('initialize', {})
        elapsed = time.monotonic() - started

        assert 0.25 <= elapsed < 3.0
        assert client.pending_count == 0


def test_cancel_aborts_in_flight_call():
    """Cancelling wakes a blocked caller well before the timeout."""
    errors = []

    with make_client('silent', timeout=30.0) as client:
        def blocked_call():
            try:
                client.call('initialize', {})
            except LspError as e:
                errors.append(e)

        thread = threading.Thread(target=blocked_call)
        thread.start()
        assert wait_for(lambda: client.pending_count == 1)

        started = time.monotonic()
        client.cancel()
        thread.join(timeout=5)

        assert time.monotonic() - started < 2.0
        assert len(errors) == 1
        assert isinstance(errors[0], LspCancelledError)
        assert client.pending_count == 0

        with pytest.raises(LspCancelledError):
            client.call('again', {})


def test_cancel_leaves_shared_event_alone():
    """Cancelling one client does not cancel others sharing the same event."""
    shared = threading.Event()

    with make_client('echo', cancel_event=shared) as first:
        first.cancel()
        with pytest.raises(LspCancelledError):
            first.call('ping', {})

    assert not shared.is_set()
    with make_client('echo', cancel_event=shared) as second:
        assert second.call('ping', {})["method"] == 'ping'


def test_external_cancel_event_aborts_call():
    """Setting a shared cancel event stops a waiting call."""
    cancel_event = threading.Event()
    timer = threading.Timer(0.2, cancel_event.set)

    with make_client('silent', timeout=30.0, cancel_event=cancel_event) as client:
        timer.start()
        started = time.monotonic()
        with pytest.raises(LspCancelledError):
            client.call('initialize', {})

        assert time.monotonic() - started < 2.0
        assert client.pending_count == 0


def test_server_exit_fails_pending_call_promptly():
    """If the server dies, waiting callers are told instead of timing out."""
    with make_client('exit', timeout=30.0) as client:
        started = time.monotonic()
        with pytest.raises(LspClosedError):
            client.call('initialize', {})

        assert time.monotonic() - started < 5.0
        assert client.pending_count == 0


def test_notify_does_not_register_pending():
    with make_client('echo') as client:
        client.notify('initialized', {})
        assert client.pending_count == 0
        assert client.call('ping', {})["method"] == 'ping'


def test_close_waits_for_exit_and_is_idempotent():
    client = make_client('echo')
    assert client.close() == 0
    assert client.close() is None


def test_spawn_failure_raises_lsp_error():
    with pytest.raises(LspError):
        LspClient('definitely-not-a-language-server-binary')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
