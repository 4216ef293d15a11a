"""Probe registry — loads the probe file and owns every probe's state.

The YAML file is a top-level list; each entry describes one probe::

    - name: Example site
      web: https://example.com/
      return: 200          # expected status code
      match: Example       # regexp searched in the body / command output
      tries: 3             # attempts per poll cycle
      sleep: 5             # seconds between attempts
      repeat: 60           # seconds between poll cycles
      notify: ops@example.com   # or a list of addresses
      alert: /usr/local/bin/page-oncall
    - shell: pgrep -x nginx

The registry is constructed once by the entry point and shared by the
probe loops (writers) and the HTTP handlers (readers).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, Union

import yaml

from pulsemon.health.state import CacheWatermark, HealthState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_EXPECTED_STATUS = 200


# ── Errors ───────────────────────────────────────────────────────────────────


class ProbeFileError(Exception):
    """The probe file could not be loaded."""


class ProbeFileReadError(ProbeFileError):
    """The probe file could not be read."""


class ProbeFileParseError(ProbeFileError):
    """The probe file is not valid YAML or does not describe probes."""


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SingleRecipient:
    address: str

    def header_value(self) -> str:
        return self.address


@dataclass(frozen=True)
class MultipleRecipients:
    addresses: tuple[str, ...]

    def header_value(self) -> str:
        return ", ".join(self.addresses)


Recipient = Union[SingleRecipient, MultipleRecipients]


@dataclass(frozen=True)
class WebTarget:
    """HTTP(S) reachability check."""

    url: str
    expected_status: int = DEFAULT_EXPECTED_STATUS
    method: str = "GET"
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ShellTarget:
    """Command run through the shell; exit 0 means healthy."""

    command: str


ProbeTarget = Union[WebTarget, ShellTarget]


@dataclass(frozen=True)
class ProbeSpec:
    """Definition of a single probe from the probe file."""

    name: str = ""
    web: str = ""
    shell: str = ""
    target: ProbeTarget | None = None
    match: str = ""
    max_attempts: int = 1
    retry_delay: float = 0.0
    poll_interval: float = DEFAULT_POLL_INTERVAL
    notify: Recipient | None = None
    alert: str = ""
    config_error: str = ""  # set when both or neither of web/shell are given

    @property
    def display_name(self) -> str:
        return self.name or self.web or self.shell

    @cached_property
    def pattern(self) -> re.Pattern[str] | None:
        """Compiled ``match`` expression; raises ``re.error`` when malformed."""
        if not self.match:
            return None
        return re.compile(self.match)


@dataclass
class ProbeEntry:
    """A probe definition paired with its live state."""

    spec: ProbeSpec
    state: HealthState = field(default_factory=HealthState)

    def to_dict(self) -> dict[str, Any]:
        snap = self.state.snapshot()
        data: dict[str, Any] = {"name": self.spec.display_name}
        if self.spec.web:
            data["web"] = self.spec.web
        if self.spec.shell:
            data["shell"] = self.spec.shell
        data["failed"] = snap.failed
        if snap.since:
            data["since"] = snap.since
        if snap.error:
            data["error"] = snap.error
        return data


# ── Registry ─────────────────────────────────────────────────────────────────


class ProbeRegistry:
    """Ordered probe entries plus the shared cache watermark."""

    def __init__(self, specs: list[ProbeSpec] | None = None, watermark: CacheWatermark | None = None) -> None:
        self.entries: list[ProbeEntry] = [ProbeEntry(spec=s) for s in specs or []]
        self.watermark = watermark or CacheWatermark()

    @classmethod
    def from_file(cls, path: Path) -> ProbeRegistry:
        specs = load_probes(path)
        logger.info("Loaded %d probes from %s", len(specs), path)
        return cls(specs)

    def __len__(self) -> int:
        return len(self.entries)

    def snapshot(self) -> list[dict[str, Any]]:
        """JSON-ready state of every probe, in probe-file order."""
        return [e.to_dict() for e in self.entries]


# ── Parsers ──────────────────────────────────────────────────────────────────


def load_probes(path: Path) -> list[ProbeSpec]:
    """Read and parse the probe file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ProbeFileReadError(str(e)) from e

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ProbeFileParseError(f"invalid config at {path}\n{e}") from e

    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ProbeFileParseError(f"invalid config at {path}\nexpected a list of probes")

    specs = []
    for i, entry in enumerate(raw):
        try:
            specs.append(parse_probe(entry))
        except (TypeError, ValueError) as e:
            raise ProbeFileParseError(f"invalid config at {path}\nentry #{i + 1}: {e}") from e
    return specs


def parse_probe(raw: Any) -> ProbeSpec:
    if not isinstance(raw, dict):
        raise TypeError("probe entry must be a mapping")

    name = _str(raw, "name")
    web = _str(raw, "web")
    shell = _str(raw, "shell")

    target: ProbeTarget | None = None
    config_error = ""
    if web and shell:
        config_error = "web and shell targets in one probe are not allowed"
    elif not web and not shell:
        config_error = "probe has neither a web nor a shell target"
    elif web:
        body = _str(raw, "body")
        target = WebTarget(
            url=web,
            expected_status=_number(raw, "return", int) or DEFAULT_EXPECTED_STATUS,
            method=(_str(raw, "method") or ("POST" if body else "GET")).upper(),
            body=body,
            headers=_headers(raw.get("headers")),
        )
    else:
        target = ShellTarget(command=shell)

    return ProbeSpec(
        name=name,
        web=web,
        shell=shell,
        target=target,
        match=_str(raw, "match"),
        max_attempts=_number(raw, "tries", int) or 1,
        retry_delay=float(_number(raw, "sleep", float)),
        poll_interval=float(_number(raw, "repeat", float) or DEFAULT_POLL_INTERVAL),
        notify=parse_recipient(raw.get("notify")),
        alert=_str(raw, "alert"),
        config_error=config_error,
    )


def parse_recipient(raw: Any) -> Recipient | None:
    """Resolve ``notify`` (string or list of strings) into a Recipient."""
    if raw is None or raw == "" or raw == []:
        return None
    if isinstance(raw, str):
        return SingleRecipient(raw)
    if isinstance(raw, list) and all(isinstance(a, str) and a for a in raw):
        if len(raw) == 1:
            return SingleRecipient(raw[0])
        return MultipleRecipients(tuple(raw))
    raise ValueError("notify must be an address or a list of addresses")


def _str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"{key} must be a string")
    return str(value)


def _number(raw: dict[str, Any], key: str, kind: type) -> Any:
    value = raw.get(key)
    if value is None:
        return kind(0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number, got {value!r}")
    if kind is int and not float(value).is_integer():
        raise ValueError(f"{key} must be a whole number, got {value!r}")
    if value < 0:
        raise ValueError(f"{key} must not be negative")
    return kind(value)


def _headers(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("headers must be a mapping")
    return {str(k): str(v) for k, v in raw.items()}
