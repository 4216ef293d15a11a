"""Transition notifications — local mail and an external alert command.

Fires on every probe state transition (healthy → failed, failed → healthy):
- Mail: an RFC 822 message piped to ``sendmail -t``
- Alert command: ``<alert> true|false <name> [message]``

Both channels are fire-and-forget: ``dispatch`` schedules detached tasks
and returns at once. Failures are logged and dropped; they never feed back
into probe state and are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage

from pulsemon.config import settings
from pulsemon.probes.registry import ProbeSpec, Recipient
from pulsemon.version import APP_NAME

logger = logging.getLogger(__name__)


def header_value(value: str) -> str:
    """Collapse whitespace runs, line breaks included, into single spaces."""
    return " ".join(value.split())


def build_mail(recipient: Recipient, subject: str, body: str | None = None) -> bytes:
    msg = EmailMessage()
    msg["To"] = header_value(recipient.header_value())
    msg["Subject"] = header_value(subject)
    msg["X-Mailer"] = APP_NAME
    msg.set_content(body or "")
    return bytes(msg)


def alert_args(spec: ProbeSpec, failed: bool, message: str | None) -> list[str]:
    """Positional arguments for the alert command."""
    args = [spec.alert, "true" if failed else "false", spec.display_name]
    if message:
        args.append(message)
    return args


class NotificationDispatcher:
    """Launches mail/alert deliveries as detached asyncio tasks."""

    def __init__(self, sendmail_path: str = "") -> None:
        self.sendmail_path = sendmail_path or settings.sendmail_path
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(
        self,
        spec: ProbeSpec,
        failed: bool,
        subject: str,
        message: str | None = None,
    ) -> list[asyncio.Task[None]]:
        """Schedule every configured channel for one transition.

        Must be called from the event loop thread. Returns the scheduled
        tasks; callers are not expected to await them.
        """
        tasks = []
        if spec.notify is not None:
            tasks.append(self._spawn(self.send_mail(spec.notify, subject, message), f"mail-{subject}"))
        if spec.alert:
            tasks.append(self._spawn(self.run_alert(spec, failed, message), f"alert-{subject}"))
        return tasks

    async def wait_idle(self) -> None:
        """Wait for all in-flight deliveries (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro, name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # -- Channels -----------------------------------------------------------

    async def send_mail(self, recipient: Recipient, subject: str, body: str | None = None) -> None:
        """Hand the message to the local MTA on stdin."""
        try:
            data = build_mail(recipient, subject, body)
            proc = await asyncio.create_subprocess_exec(
                self.sendmail_path, "-t",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            out, _ = await proc.communicate(data)
        except (OSError, ValueError) as e:
            logger.error("Mail to %s failed: %s", recipient.header_value(), e)
            return
        if proc.returncode != 0:
            logger.error(
                "%s exited with %d for %s\n%s",
                self.sendmail_path, proc.returncode, recipient.header_value(),
                out.decode("utf-8", errors="replace"),
            )
        else:
            logger.debug("Mail sent to %s: %s", recipient.header_value(), subject)

    async def run_alert(self, spec: ProbeSpec, failed: bool, message: str | None = None) -> None:
        """Run the probe's alert command."""
        args = alert_args(spec, failed, message)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            out, _ = await proc.communicate()
        except OSError as e:
            logger.error("%s failed\n%s", spec.alert, e)
            return
        if proc.returncode != 0:
            logger.error(
                "%s failed\n%sexit status %d",
                spec.alert, out.decode("utf-8", errors="replace"), proc.returncode,
            )
