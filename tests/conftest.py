"""Shared test fixtures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from pulsemon.health.engine import ProbeOutcome
from pulsemon.notifications import NotificationDispatcher
from pulsemon.probes.registry import ProbeSpec, ShellTarget, WebTarget


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records transitions instead of spawning processes."""

    def __init__(self) -> None:
        super().__init__(sendmail_path="/nonexistent/sendmail")
        self.sent: list[tuple[str, bool, str, str | None]] = []

    def dispatch(self, spec, failed, subject, message=None):  # type: ignore[override]
        self.sent.append((spec.display_name, failed, subject, message))
        return []


class ScriptedProber:
    """Prober returning a fixed sequence of outcomes (True = success)."""

    def __init__(self, *results: bool, message: str = "boom") -> None:
        self.results = list(results)
        self.message = message
        self.calls = 0

    def __call__(self, spec: ProbeSpec) -> ProbeOutcome:
        self.calls += 1
        ok = self.results.pop(0)
        return ProbeOutcome(ok=ok, message="" if ok else self.message)


@pytest.fixture(autouse=True)
def reset_pulsemon_logger() -> Iterator[None]:
    """configure_logging() rewires the pulsemon logger; undo it after each test."""
    log = logging.getLogger("pulsemon")
    handlers, level, propagate = list(log.handlers), log.level, log.propagate
    yield
    log.handlers = handlers
    log.setLevel(level)
    log.propagate = propagate


@pytest.fixture
def web_spec() -> ProbeSpec:
    url = "http://service.test/health"
    return ProbeSpec(name="service", web=url, target=WebTarget(url=url))


@pytest.fixture
def shell_spec() -> ProbeSpec:
    return ProbeSpec(shell="echo ok", target=ShellTarget(command="echo ok"), match="^ok$")


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    """Async sleep stand-in recording requested delays in ``.calls``."""

    async def fake_sleep(seconds: float) -> None:
        fake_sleep.calls.append(seconds)

    fake_sleep.calls = []
    return fake_sleep


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], Any]:
    """Route the engine's httpx.Client through a MockTransport handler."""
    real_client = httpx.Client

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> Any:
        def factory(**kwargs: Any) -> httpx.Client:
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        return patch("pulsemon.health.engine.httpx.Client", side_effect=factory)

    return install


@pytest.fixture
def scripted() -> type[ScriptedProber]:
    return ScriptedProber
