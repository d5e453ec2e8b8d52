"""Notification dispatcher: queued email jobs with retry, decoupled from request handling.

Jobs are submitted by request handlers and delivered by a background worker
started in the app lifespan. Failures are logged and recorded, never raised to
the caller. Jobs with a ``dedupe_key`` are recorded in ``notification_log``
first; a second submission with the same key is dropped, so repeated
reconciliation of one order sends one confirmation.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import resend
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

import config
from robomania.models import NotificationLog
from robomania.models.base import async_session_factory
from robomania.services.email_templates import render

logger = logging.getLogger("robomania.notify")

Sender = Callable[[str, str, str], Awaitable[None]]


async def send_email(to: str, subject: str, html: str) -> None:
    """Send through Resend. Without RESEND_API_KEY, just log (local dev)."""
    if not config.RESEND_API_KEY:
        logger.info("[EMAIL - DEV ONLY] %s -> %s", to, subject)
        return
    resend.api_key = config.RESEND_API_KEY
    params = {
        "from": config.RESEND_FROM_EMAIL,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    # resend is a blocking client
    await asyncio.to_thread(resend.Emails.send, params)
    logger.info("Email sent to %s: %s", to, subject)


@dataclass
class NotificationJob:
    kind: str
    recipient: str
    data: dict = field(default_factory=dict)
    dedupe_key: Optional[str] = None


class NotificationDispatcher:
    """Work queue for outgoing emails with exponential backoff between attempts."""

    def __init__(
        self,
        sender: Optional[Sender] = None,
        session_factory=async_session_factory,
        max_attempts: int = config.NOTIFY_MAX_ATTEMPTS,
        backoff_seconds: float = config.NOTIFY_BACKOFF_SECONDS,
    ):
        self._sender = sender or send_email
        self._session_factory = session_factory
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._queue: asyncio.Queue[NotificationJob] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def submit(
        self,
        kind: str,
        recipient: Optional[str],
        data: Optional[dict] = None,
        dedupe_key: Optional[str] = None,
    ) -> bool:
        """Queue a notification. Returns False if it was skipped (no recipient or duplicate)."""
        if not recipient:
            logger.warning("Skipping %s notification: no recipient", kind)
            return False
        if dedupe_key and not await self._claim(dedupe_key, kind, recipient):
            logger.info("Skipping duplicate %s notification (%s)", kind, dedupe_key)
            return False
        await self._queue.put(NotificationJob(kind, recipient, data or {}, dedupe_key))
        return True

    async def _claim(self, dedupe_key: str, kind: str, recipient: str) -> bool:
        async with self._session_factory() as session:
            session.add(NotificationLog(dedupe_key=dedupe_key, kind=kind, recipient=recipient))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def _record(self, job: NotificationJob, status: str, attempts: int, error: Optional[str] = None) -> None:
        if not job.dedupe_key:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(NotificationLog)
                .where(NotificationLog.dedupe_key == job.dedupe_key)
                .values(status=status, attempts=attempts, last_error=error)
            )
            await session.commit()

    async def deliver(self, job: NotificationJob) -> bool:
        """Render and send one job, retrying with backoff. Returns True once sent."""
        subject, html = render(job.kind, job.data)
        error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._sender(job.recipient, subject, html)
            except Exception as e:
                error = str(e) or e.__class__.__name__
                logger.warning(
                    "Sending %s to %s failed (attempt %d/%d): %s",
                    job.kind, job.recipient, attempt, self.max_attempts, error,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                continue
            await self._record(job, "SENT", attempt)
            return True
        logger.error("Giving up on %s notification to %s: %s", job.kind, job.recipient, error)
        await self._record(job, "FAILED", self.max_attempts, error)
        return False

    async def drain(self) -> int:
        """Deliver everything currently queued, inline. Returns the number of jobs processed."""
        count = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self.deliver(job)
            except Exception:
                logger.exception("Notification job %s failed", job.kind)
            finally:
                self._queue.task_done()
            count += 1
        return count

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.deliver(job)
            except Exception:
                logger.exception("Notification job %s failed", job.kind)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-worker")
            logger.info("Notification worker started")

    async def stop(self) -> None:
        """Stop the worker, then flush whatever is still queued."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.drain()
