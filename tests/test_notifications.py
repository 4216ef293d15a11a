"""Tests for mail / alert-command notifications."""

from __future__ import annotations

import asyncio
import logging
import stat
from email import message_from_bytes
from pathlib import Path
from unittest.mock import patch

import pytest

from pulsemon.notifications import NotificationDispatcher, alert_args, build_mail
from pulsemon.probes.registry import MultipleRecipients, ProbeSpec, ShellTarget, SingleRecipient


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture
def fake_sendmail(tmp_path: Path) -> Path:
    """Script standing in for sendmail: stores argv and the piped message."""
    out = tmp_path / "mail"
    return write_script(tmp_path / "sendmail", f'echo "$@" > {out}.args\ncat > {out}.eml\n')


@pytest.fixture
def fake_alert(tmp_path: Path) -> Path:
    """Alert command writing one argument per line."""
    out = tmp_path / "alert.out"
    return write_script(tmp_path / "alert", f'for a in "$@"; do echo "$a"; done > {out}\n')


def shell_probe(**kwargs) -> ProbeSpec:
    return ProbeSpec(name="disk", shell="df /", target=ShellTarget("df /"), **kwargs)


def run_dispatch(dispatcher: NotificationDispatcher, *args) -> list[asyncio.Task[None]]:
    async def go() -> list[asyncio.Task[None]]:
        tasks = dispatcher.dispatch(*args)
        await dispatcher.wait_idle()
        return tasks

    return asyncio.run(go())


# ── Message building ─────────────────────────────────────────────────────────


class TestBuildMail:
    def test_headers_and_body(self) -> None:
        raw = build_mail(SingleRecipient("ops@example.com"), "Failed: disk", "no space left")
        msg = message_from_bytes(raw)
        assert msg["To"] == "ops@example.com"
        assert msg["Subject"] == "Failed: disk"
        assert msg["X-Mailer"] == "pulsemon"
        assert msg.get_payload().strip() == "no space left"

    def test_multiple_recipients(self) -> None:
        raw = build_mail(MultipleRecipients(("a@example.com", "b@example.com")), "Fixed: disk")
        assert message_from_bytes(raw)["To"] == "a@example.com, b@example.com"

    def test_multi_line_subject_is_folded(self) -> None:
        raw = build_mail(SingleRecipient("ops@example.com"), "Failed: pgrep nginx\n  && pgrep php\n", "x")
        msg = message_from_bytes(raw)
        assert msg["Subject"] == "Failed: pgrep nginx && pgrep php"
        assert msg["X-Mailer"] == "pulsemon"

    def test_trailing_newline_keeps_header_block_intact(self) -> None:
        raw = build_mail(SingleRecipient("ops@example.com"), "Failed: pgrep nginx\n", "x")
        headers, _, body = raw.partition(b"\n\n")
        assert b"Subject: Failed: pgrep nginx\n" in headers + b"\n"
        assert b"X-Mailer: pulsemon" in headers
        assert body.strip() == b"x"


class TestAlertArgs:
    def test_failure_includes_message(self) -> None:
        spec = shell_probe(alert="/bin/page")
        assert alert_args(spec, True, "boom") == ["/bin/page", "true", "disk", "boom"]

    def test_recovery_without_detail(self) -> None:
        spec = shell_probe(alert="/bin/page")
        assert alert_args(spec, False, None) == ["/bin/page", "false", "disk"]


# ── Dispatch ─────────────────────────────────────────────────────────────────


class TestDispatch:
    def test_nothing_configured(self) -> None:
        assert run_dispatch(NotificationDispatcher(), shell_probe(), True, "Failed: disk", "x") == []

    def test_mail_is_piped_to_sendmail(self, fake_sendmail: Path, tmp_path: Path) -> None:
        dispatcher = NotificationDispatcher(sendmail_path=str(fake_sendmail))
        spec = shell_probe(notify=SingleRecipient("ops@example.com"))

        tasks = run_dispatch(dispatcher, spec, True, "Failed: disk", "no space left")

        assert len(tasks) == 1
        assert (tmp_path / "mail.args").read_text().strip() == "-t"
        msg = message_from_bytes((tmp_path / "mail.eml").read_bytes())
        assert msg["To"] == "ops@example.com"
        assert msg["Subject"] == "Failed: disk"
        assert dispatcher.pending == 0

    def test_multi_line_command_name_in_subject(self, fake_sendmail: Path, tmp_path: Path) -> None:
        dispatcher = NotificationDispatcher(sendmail_path=str(fake_sendmail))
        spec = ProbeSpec(shell="pgrep nginx\n", target=ShellTarget("pgrep nginx\n"), notify=SingleRecipient("ops@example.com"))

        run_dispatch(dispatcher, spec, True, f"Failed: {spec.display_name}", "exit status 1")

        msg = message_from_bytes((tmp_path / "mail.eml").read_bytes())
        assert msg["Subject"] == "Failed: pgrep nginx"
        assert msg["X-Mailer"] == "pulsemon"
        assert msg.get_payload().strip() == "exit status 1"

    def test_alert_command_arguments(self, fake_alert: Path, tmp_path: Path) -> None:
        spec = shell_probe(alert=str(fake_alert))
        run_dispatch(NotificationDispatcher(), spec, True, "Failed: disk", "no space left")
        assert (tmp_path / "alert.out").read_text().splitlines() == ["true", "disk", "no space left"]

    def test_alert_on_recovery_omits_message(self, fake_alert: Path, tmp_path: Path) -> None:
        spec = shell_probe(alert=str(fake_alert))
        run_dispatch(NotificationDispatcher(), spec, False, "Fixed: disk")
        assert (tmp_path / "alert.out").read_text().splitlines() == ["false", "disk"]

    def test_both_channels(self, fake_sendmail: Path, fake_alert: Path, tmp_path: Path) -> None:
        dispatcher = NotificationDispatcher(sendmail_path=str(fake_sendmail))
        spec = shell_probe(notify=SingleRecipient("ops@example.com"), alert=str(fake_alert))
        tasks = run_dispatch(dispatcher, spec, True, "Failed: disk", "x")
        assert len(tasks) == 2
        assert (tmp_path / "mail.eml").exists()
        assert (tmp_path / "alert.out").exists()

    def test_dispatch_does_not_wait(self, tmp_path: Path) -> None:
        slow = write_script(tmp_path / "slow", "sleep 1\n")
        dispatcher = NotificationDispatcher()
        spec = shell_probe(alert=str(slow))

        async def go() -> tuple[int, float]:
            loop = asyncio.get_running_loop()
            t0 = loop.time()
            dispatcher.dispatch(spec, True, "Failed: disk", "x")
            elapsed = loop.time() - t0
            pending = dispatcher.pending
            await dispatcher.wait_idle()
            return pending, elapsed

        pending, elapsed = asyncio.run(go())
        assert pending == 1
        assert elapsed < 0.5


# ── Failures are logged, never raised ────────────────────────────────────────


class TestFailures:
    def test_missing_sendmail(self, tmp_path: Path, caplog) -> None:
        dispatcher = NotificationDispatcher(sendmail_path=str(tmp_path / "no-sendmail"))
        spec = shell_probe(notify=SingleRecipient("ops@example.com"))
        with caplog.at_level(logging.ERROR, logger="pulsemon"):
            run_dispatch(dispatcher, spec, True, "Failed: disk", "x")
        assert "Mail to ops@example.com failed" in caplog.text

    def test_unbuildable_message_is_logged(self, fake_sendmail: Path, tmp_path: Path, caplog) -> None:
        dispatcher = NotificationDispatcher(sendmail_path=str(fake_sendmail))
        spec = shell_probe(notify=SingleRecipient("ops@example.com"))
        with patch("pulsemon.notifications.build_mail", side_effect=ValueError("bad header")), \
                caplog.at_level(logging.ERROR, logger="pulsemon"):
            run_dispatch(dispatcher, spec, True, "Failed: disk", "x")
        assert "Mail to ops@example.com failed: bad header" in caplog.text
        assert not (tmp_path / "mail.eml").exists()

    def test_sendmail_nonzero_exit(self, tmp_path: Path, caplog) -> None:
        bad = write_script(tmp_path / "sendmail", "cat > /dev/null\necho relay denied\nexit 75\n")
        dispatcher = NotificationDispatcher(sendmail_path=str(bad))
        spec = shell_probe(notify=SingleRecipient("ops@example.com"))
        with caplog.at_level(logging.ERROR, logger="pulsemon"):
            run_dispatch(dispatcher, spec, True, "Failed: disk", "x")
        assert "exited with 75" in caplog.text
        assert "relay denied" in caplog.text

    def test_alert_nonzero_exit(self, tmp_path: Path, caplog) -> None:
        bad = write_script(tmp_path / "alert", "echo pager down\nexit 2\n")
        spec = shell_probe(alert=str(bad))
        with caplog.at_level(logging.ERROR, logger="pulsemon"):
            run_dispatch(NotificationDispatcher(), spec, True, "Failed: disk", "x")
        assert "pager down" in caplog.text
        assert "exit status 2" in caplog.text

    def test_missing_alert_command(self, tmp_path: Path, caplog) -> None:
        spec = shell_probe(alert=str(tmp_path / "missing"))
        with caplog.at_level(logging.ERROR, logger="pulsemon"):
            run_dispatch(NotificationDispatcher(), spec, True, "Failed: disk", "x")
        assert f"{tmp_path / 'missing'} failed" in caplog.text
