"""Probe engine — performs one probe attempt and judges success.

Supports: HTTP(S) fetch (status code + optional body pattern) and shell
commands (exit code + optional output pattern). Attempts never raise for
probe failures; they return a ProbeOutcome with ``ok=False`` and a
human-readable message.
"""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from ..config import settings
from ..probes.registry import ProbeSpec, ShellTarget, WebTarget

logger = logging.getLogger(__name__)


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass
class ProbeOutcome:
    """Result of a single probe attempt."""

    ok: bool
    message: str = ""
    latency_ms: float = 0.0
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


def mismatch_message(pattern: re.Pattern[str], got: str) -> str:
    return f"Expected:\n{pattern.pattern}\n\nGot:\n{got}"


class ShellProcesses:
    """Shell probe children that are still running.

    Each child leads its own process group so ``kill_all`` also reaches
    anything the command forked. Once closed, new children are killed as
    soon as they start.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._procs: set[subprocess.Popen[str]] = set()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._procs)

    def run(self, args: list[str]) -> tuple[int, str]:
        """Run ``args`` to completion; returns (exit status, merged output)."""
        proc = subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
        with self._lock:
            closed = self._closed
            if not closed:
                self._procs.add(proc)
        if closed:
            _kill_group(proc)
        try:
            output, _ = proc.communicate()
        finally:
            with self._lock:
                self._procs.discard(proc)
        return proc.returncode, output or ""

    def kill_all(self) -> None:
        with self._lock:
            self._closed = True
            procs = list(self._procs)
        for proc in procs:
            _kill_group(proc)
        if procs:
            logger.debug("Killed %d running shell probes", len(procs))


def _kill_group(proc: subprocess.Popen[str]) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug("Cannot kill process group %d: %s", proc.pid, e)


# ── Attempt strategies ───────────────────────────────────────────────────────


def run_web_probe(
    target: WebTarget,
    pattern: re.Pattern[str] | None = None,
    timeout: float | None = None,
    max_redirects: int | None = None,
) -> ProbeOutcome:
    """HTTP(S) probe — redirects followed up to ``max_redirects`` hops."""
    timeout = settings.http_timeout if timeout is None else timeout
    max_redirects = settings.max_redirects if max_redirects is None else max_redirects
    t0 = time.perf_counter()
    try:
        with httpx.Client(
            timeout=timeout, follow_redirects=True, max_redirects=max_redirects,
        ) as client:
            with client.stream(
                target.method,
                target.url,
                content=target.body or None,
                headers=target.headers or None,
            ) as resp:
                latency = round((time.perf_counter() - t0) * 1000, 1)

                if resp.status_code != target.expected_status:
                    return ProbeOutcome(
                        ok=False, latency_ms=latency,
                        message=f"{target.url} returned {resp.status_code}",
                    )

                if pattern is not None:
                    resp.read()
                    if not pattern.search(resp.text):
                        return ProbeOutcome(
                            ok=False, latency_ms=latency, message=mismatch_message(pattern, resp.text),
                        )

                return ProbeOutcome(ok=True, latency_ms=latency, message=f"{resp.status_code} OK")
    except httpx.TooManyRedirects:
        return ProbeOutcome(
            ok=False, latency_ms=_elapsed(t0),
            message=f"{target.url}: too many redirects (limit {max_redirects})",
        )
    except httpx.TimeoutException:
        return ProbeOutcome(
            ok=False, latency_ms=_elapsed(t0),
            message=f"{target.url}: timed out after {timeout}s",
        )
    except httpx.TransportError as e:
        return ProbeOutcome(
            ok=False, latency_ms=_elapsed(t0), message=f"Connection error: {target.url}: {e}",
        )
    except Exception as e:
        return ProbeOutcome(
            ok=False, latency_ms=_elapsed(t0), message=f"Error: {type(e).__name__}: {e}",
        )


def run_shell_probe(
    target: ShellTarget,
    pattern: re.Pattern[str] | None = None,
    shell_path: str | None = None,
    processes: ShellProcesses | None = None,
) -> ProbeOutcome:
    """Shell probe — stdout and stderr are captured together."""
    shell_path = shell_path or settings.shell_path
    if processes is None:
        processes = ShellProcesses()
    t0 = time.perf_counter()
    try:
        returncode, output = processes.run([shell_path, "-c", target.command])
    except OSError as e:
        return ProbeOutcome(
            ok=False, latency_ms=_elapsed(t0), message=f"Cannot run {shell_path}: {e}",
        )

    latency = _elapsed(t0)
    if returncode != 0:
        return ProbeOutcome(
            ok=False, latency_ms=latency, message=f"{output}exit status {returncode}",
        )
    if pattern is not None and not pattern.search(output):
        return ProbeOutcome(ok=False, latency_ms=latency, message=mismatch_message(pattern, output))
    return ProbeOutcome(ok=True, latency_ms=latency, message=output)


def _elapsed(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


# Dispatcher
PROBE_RUNNERS: dict[type, Callable[[ProbeSpec, ShellProcesses | None], ProbeOutcome]] = {
    WebTarget: lambda s, _: run_web_probe(s.target, s.pattern),
    ShellTarget: lambda s, processes: run_shell_probe(s.target, s.pattern, processes=processes),
}


def execute_probe(spec: ProbeSpec, processes: ShellProcesses | None = None) -> ProbeOutcome:
    """Run one attempt of ``spec``.

    Shell children are registered with ``processes`` when given, so the
    caller can kill them on shutdown. Raises ``ValueError`` for a spec
    without a runnable target and ``re.error`` for a malformed pattern;
    both are configuration errors the caller checks before polling.
    """
    runner = PROBE_RUNNERS.get(type(spec.target))
    if runner is None:
        raise ValueError(spec.config_error or f"{spec.display_name}: no runnable target")
    return runner(spec, processes)
