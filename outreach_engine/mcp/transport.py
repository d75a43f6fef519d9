"""
Tool Transports
===============
Raw request/response channels to tool providers speaking JSON-RPC.

    StdioTransport  - a subprocess; one JSON object per line on stdin/stdout.
                      The pipe is a single channel, so sends are serialized.
    HttpTransport   - one HTTP POST per request. Safe to share across threads.

Transports know nothing about tools; they move envelopes. Every channel
failure surfaces as TransportError.
"""

import itertools
import json
import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..errors import TransportError

log = logging.getLogger("outreach.mcp.transport")


class BaseTransport(ABC):
    """Abstract base for tool transports."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    def connect(self):
        pass

    @abstractmethod
    def disconnect(self):
        pass

    @abstractmethod
    def send(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request envelope and block for its response envelope."""
        pass

    def notify(self, message: Dict[str, Any]):
        """Send a one-way notification. Transports without one-way delivery ignore it."""
        pass


class StdioTransport(BaseTransport):
    """
    Talk to a tool provider running as a child process.

    Usage:
        transport = StdioTransport("npx", ["-y", "@playwright/mcp@latest"])
        transport.connect()
        transport.send({"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}})
    """

    MAX_SKIPPED_LINES = 1000

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def connect(self):
        if self.is_connected:
            return

        log.info(f"Starting tool process: {self.command} {' '.join(self.args)}")
        env = None
        if self.env:
            env = dict(os.environ)
            env.update(self.env)

        try:
            self._process = subprocess.Popen(
                [self.command, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                cwd=self.cwd,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as e:
            raise TransportError(f"Failed to start tool process '{self.command}': {e}") from e

        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, args=(self._process,),
            daemon=True, name=f"stderr-{os.path.basename(self.command)}",
        )
        self._stderr_thread.start()
        log.info(f"Tool process started (pid {self._process.pid})")

    def disconnect(self):
        process = self._process
        if process is None:
            return

        log.info(f"Stopping tool process (pid {process.pid})")
        self._process = None
        try:
            if process.stdin:
                process.stdin.close()
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait(timeout=5)
        except OSError as e:
            log.warning(f"Error while stopping tool process: {e}")
        finally:
            if process.stdout:
                process.stdout.close()

    def send(self, request: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            process = self._require_process()
            self._write(process, request)
            request_id = request.get("id")

            for _ in range(self.MAX_SKIPPED_LINES):
                line = process.stdout.readline()
                if not line:
                    code = process.poll()
                    raise TransportError(
                        "Tool process closed its output"
                        + (f" (exit code {code})" if code is not None else "")
                    )
                line = line.strip()
                if not line:
                    continue

                try:
                    response = json.loads(line)
                except json.JSONDecodeError as e:
                    raise TransportError(f"Malformed response from tool process: {line[:200]}") from e
                if not isinstance(response, dict):
                    raise TransportError(f"Unexpected response from tool process: {line[:200]}")

                # Server-initiated notifications and stray replies are not ours
                if "id" not in response or (request_id is not None and response["id"] != request_id):
                    log.debug(f"Skipping unrelated message: {line[:200]}")
                    continue

                log.debug(f"Received response: {line[:500]}")
                return response

        raise TransportError("Tool process did not answer the request")

    def notify(self, message: Dict[str, Any]):
        with self._lock:
            self._write(self._require_process(), message)

    def _require_process(self) -> subprocess.Popen:
        process = self._process
        if process is None:
            raise TransportError("Transport is not connected")
        code = process.poll()
        if code is not None:
            raise TransportError(f"Tool process has exited (exit code {code})")
        return process

    def _write(self, process: subprocess.Popen, message: Dict[str, Any]):
        payload = json.dumps(message)
        log.debug(f"Sending: {payload[:500]}")
        try:
            process.stdin.write(payload + "\n")
            process.stdin.flush()
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to write to tool process: {e}") from e

    @staticmethod
    def _drain_stderr(process: subprocess.Popen):
        try:
            for line in process.stderr:
                line = line.rstrip()
                if line:
                    log.warning(f"Tool stderr: {line}")
        except (OSError, ValueError):
            pass


class HttpTransport(BaseTransport):
    """
    Talk to a remote tool service over HTTP.

    The envelope id is replaced by a per-instance counter so concurrent callers
    never share an id.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self):
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
            self._owns_client = True
        self._connected = True
        log.info(f"HTTP tool transport ready for {self.url}")

    def disconnect(self):
        self._connected = False
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        log.info(f"HTTP tool transport closed for {self.url}")

    def next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def send(self, request: Dict[str, Any]) -> Dict[str, Any]:
        if not self._connected or self._client is None:
            raise TransportError("Transport is not connected")

        envelope = {
            "jsonrpc": "2.0",
            "id": self.next_id(),
            "method": request.get("method"),
            "params": request.get("params", {}),
        }
        log.debug(f"POST {self.url}: {envelope['method']} (id {envelope['id']})")

        try:
            resp = self._client.post(
                self.url,
                json=envelope,
                headers={"Accept": "application/json", **self.headers},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Tool service returned HTTP {e.response.status_code} for {envelope['method']}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Cannot reach tool service at {self.url}: {e}") from e
        except ValueError as e:
            raise TransportError(f"Malformed response from tool service at {self.url}") from e

        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response from tool service at {self.url}")
        log.debug(f"Received {len(resp.content)} bytes from {self.url}")
        return data
