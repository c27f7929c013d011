"""Language Server Protocol client over a subprocess's stdin/stdout."""

import json
import logging
import queue
import subprocess
import threading
import time
from typing import Any, Dict, Optional, Sequence
from ..errors import (
    LspCancelledError,
    LspClosedError,
    LspError,
    LspResponseError,
    LspTimeoutError,
)
from .protocol import encode_message, notification, read_message, request, response, server_request_result

logger = logging.getLogger(__name__)


DEFAULT_REQUEST_TIMEOUT = 10.0
SHUTDOWN_TIMEOUT = 5.0
# How often a blocked call re-checks an externally set cancel event
CANCEL_POLL_INTERVAL = 0.05

# Sentinels delivered to pending calls instead of a response
_CLOSED = object()
_CANCELLED = object()


class LspClient:
    """JSON-RPC 2.0 client for one language server process.

    A background thread reads framed messages from the server and hands
    each response to the call waiting on its id. Every pending slot is a
    one-element queue, so delivery never blocks the reader. Slots are
    removed under ``_lock`` on delivery, timeout, cancellation and close.

    Use as a context manager so ``close()`` runs on every exit path::

        with LspClient('gopls') as client:
            client.call('initialize', params)
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        cancel_event: Optional[threading.Event] = None
    ):
        """Spawn the server and start the reader thread.

        Args:
            command: Executable to launch
            args: Extra command-line arguments
            cwd: Working directory for the server
            timeout: Default seconds to wait for each response
            cancel_event: Shared event that aborts in-flight calls when set

        Raises:
            LspError: If the process cannot be started
        """
        self.command = command
        self.args = list(args)
        self.timeout = timeout

        try:
            self._process = subprocess.Popen(
                [command, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                cwd=cwd,
            )
        except OSError as e:
            raise LspError(f"Failed to start {command}: {e}") from e

        self._seq = 0
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._pending: Dict[int, queue.Queue] = {}
        self._cancelled = threading.Event()
        self._shared_cancel = cancel_event
        self._reader_done = False
        self._closed = False

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"lsp-reader-{command}",
            daemon=True,
        )
        self._reader.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    @property
    def pending_count(self) -> int:
        """Number of requests still waiting for a response."""
        with self._lock:
            return len(self._pending)

    def call(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """Send a request and block until its response arrives.

        Args:
            method: JSON-RPC method name
            params: JSON-serializable parameters
            timeout: Seconds to wait, defaulting to the client's timeout

        Returns:
            The ``result`` member of the response

        Raises:
            LspTimeoutError: No response within the timeout
            LspCancelledError: The client was cancelled while waiting
            LspClosedError: The server exited or its stdin is closed
            LspResponseError: The server returned a JSON-RPC error
        """
        if self._is_cancelled():
            raise LspCancelledError(f"Cancelled before sending {method}")

        slot: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            if self._reader_done:
                raise LspClosedError(f"{self.command} is not running")
            self._seq += 1
            request_id = self._seq
            self._pending[request_id] = slot

        try:
            self._write(request(request_id, method, params))
            message = self._wait(slot, method, self.timeout if timeout is None else timeout)
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

        error = message.get('error')
        if error is not None:
            if isinstance(error, dict):
                raise LspResponseError(
                    f"{method} failed: {error.get('message', 'unknown error')}",
                    code=error.get('code', 0),
                )
            raise LspResponseError(f"{method} failed: {error}")

        return message.get('result')

    def notify(self, method: str, params: Any = None):
        """Send a notification; no response is expected."""
        self._write(notification(method, params))

    def cancel(self):
        """Abort every in-flight and future call on this client.

        A shared ``cancel_event`` passed to the constructor is left alone.
        """
        self._cancelled.set()
        self._wake_all(_CANCELLED)

    def close(self) -> Optional[int]:
        """Close the server's stdin and wait for it to exit.

        Returns:
            The process exit code, or None if already closed
        """
        if self._closed:
            return None
        self._closed = True

        with self._write_lock:
            try:
                self._process.stdin.close()
            except OSError as e:
                logger.debug("Closing stdin of %s failed: %s", self.command, e)

        try:
            return self._process.wait(timeout=SHUTDOWN_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit after stdin closed; killing it", self.command)
            self._process.kill()
            return self._process.wait()
        finally:
            self._reader.join(timeout=SHUTDOWN_TIMEOUT)
            self._process.stdout.close()

    def _is_cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._shared_cancel is not None and self._shared_cancel.is_set()

    def _wait(self, slot: queue.Queue, method: str, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LspTimeoutError(f"Timeout waiting for response to {method}")
            try:
                message = slot.get(timeout=min(remaining, CANCEL_POLL_INTERVAL))
            except queue.Empty:
                if self._is_cancelled():
                    raise LspCancelledError(f"Cancelled while waiting for {method}")
                continue

            if message is _CANCELLED:
                raise LspCancelledError(f"Cancelled while waiting for {method}")
            if message is _CLOSED:
                raise LspClosedError(f"{self.command} exited before answering {method}")
            return message

    def _write(self, payload: Dict[str, Any]):
        data = encode_message(payload)
        with self._write_lock:
            try:
                self._process.stdin.write(data)
                self._process.stdin.flush()
            except (OSError, ValueError) as e:
                # ValueError: write to closed file
                raise LspClosedError(f"Failed to write to {self.command}: {e}") from e

    def _wake_all(self, sentinel: object):
        with self._lock:
            slots = list(self._pending.values())
            self._pending.clear()
        for slot in slots:
            slot.put_nowait(sentinel)

    def _read_loop(self):
        stdout = self._process.stdout
        try:
            while True:
                body = read_message(stdout)
                if body is None:
                    break
                if not body:
                    continue

                try:
                    message = json.loads(body.decode('utf-8'))
                except ValueError:
                    logger.debug("Dropping malformed frame from %s", self.command)
                    continue

                if isinstance(message, dict):
                    self._dispatch(message)
        except (OSError, ValueError) as e:
            logger.debug("Reader for %s stopped: %s", self.command, e)
        finally:
            with self._lock:
                self._reader_done = True
            self._wake_all(_CLOSED)

    def _dispatch(self, message: Dict[str, Any]):
        method = message.get('method')
        if method is not None:
            # Server-initiated; never a response to one of our ids
            if 'id' in message:
                self._answer_server_request(message['id'], method, message.get('params'))
            return

        request_id = message.get('id')
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            return

        with self._lock:
            slot = self._pending.pop(request_id, None)

        if slot is None:
            logger.debug("Dropping response for unknown id %s from %s", request_id, self.command)
            return
        slot.put_nowait(message)

    def _answer_server_request(self, request_id: Any, method: str, params: Any):
        try:
            self._write(response(request_id, server_request_result(method, params)))
        except LspClosedError as e:
            logger.debug("Could not answer %s from %s: %s", method, self.command, e)
