"""
docchat/ingestion/controller.py

Ingestion lifecycle controller.

Owns every in-flight UploadTask and is the only writer of their state.
For each accepted file it runs one background asyncio task:

  1. Wait for an upload slot (at most ``max_concurrent_uploads`` at once).
  2. Transfer the bytes to the StorageBackend, applying progress updates
     that move forward and discarding the rest.  Retryable transfer errors
     start the transfer over after an exponential backoff with jitter, up
     to ``transfer_max_attempts`` attempts.
  3. Once the backend acknowledges every byte, enter Processing and wait
     for the Document.  Processing errors are final.
  4. Append the Document to the DocumentRegistry, then publish Indexed.

Every state change is published as an UploadSnapshot to a per-task history.
Subscribers replay that history from the start and then follow live
updates, so early and late subscribers see the same sequence ending in the
same terminal snapshot.

Cancellation is cooperative: the snapshot flips to Cancelled immediately,
the background task is cancelled (which aborts an open transfer), and the
backend is asked to drop the processing handle if one exists.  Once the
Document is being committed to the registry, cancel() is a no-op.
"""
from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field

import structlog

from docchat.config import settings
from docchat.errors import DocChatError, NotFoundError, TransferError, UnsupportedTypeError
from docchat.ingestion.backends.base import (
    SourceFile,
    StorageBackend,
    TransferComplete,
    TransferProgress,
)
from docchat.ingestion.filetypes import classify, mime_type_for
from docchat.ingestion.lifecycle import Phase, UploadSnapshot, UploadTask
from docchat.models.schemas.document import Document
from docchat.notifications import LogNotificationSink, NotificationSink
from docchat.registry import DocumentRegistry

logger = structlog.get_logger(__name__)

INTERNAL_ERROR = "internal_error"


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number *attempt* (0-based): capped exponential plus jitter."""
    return min(base * 2 ** attempt, maximum) + random.uniform(0, base)


@dataclass
class BatchSubmission:
    """Outcome of submitting several files at once."""
    task_ids: list[str] = field(default_factory=list)
    rejected: list[tuple[str, UnsupportedTypeError]] = field(default_factory=list)


class _TaskChannel:
    """One upload plus the published history of its snapshots."""

    def __init__(self, task: UploadTask) -> None:
        self.task = task
        self.history: list[UploadSnapshot] = []
        self.updated = asyncio.Event()
        self.runner: asyncio.Task[None] | None = None
        self.committing = False
        self.removal: asyncio.TimerHandle | None = None

    def publish(self) -> None:
        self.history.append(self.task.snapshot())
        # Wake current followers, then hand out a fresh event for the next change.
        self.updated.set()
        self.updated = asyncio.Event()

    @property
    def latest(self) -> UploadSnapshot:
        return self.history[-1]


class IngestionController:
    def __init__(
        self,
        backend: StorageBackend,
        registry: DocumentRegistry,
        notifications: NotificationSink | None = None,
        *,
        max_concurrent: int = settings.max_concurrent_uploads,
        max_attempts: int = settings.transfer_max_attempts,
        backoff_base: float = settings.transfer_backoff_base,
        backoff_max: float = settings.transfer_backoff_max,
        display_grace: float = settings.upload_display_grace_seconds,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._notifications = notifications or LogNotificationSink()
        self._slots = asyncio.Semaphore(max_concurrent)
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._display_grace = display_grace
        self._channels: dict[str, _TaskChannel] = {}

    # ── Submission ───────────────────────────────────────
    def submit(self, file: SourceFile) -> str:
        """Accept *file* for upload and return its task id without waiting.

        Must be called with a running event loop.

        Raises:
            UnsupportedTypeError: *file* is neither a PDF nor a DOCX. No task
                                  is created and the backend is not called.
        """
        try:
            document_type = classify(file.name, file.mime_type)
        except UnsupportedTypeError as exc:
            logger.info("upload_rejected", filename=file.name, mime_type=file.mime_type)
            self._notifications.error("Unsupported file", exc.reason, exc.kind)
            raise

        task = UploadTask(
            id=str(uuid.uuid4()),
            filename=file.name,
            payload=file.payload,
            document_type=document_type,
        )
        channel = _TaskChannel(task)
        self._channels[task.id] = channel
        channel.publish()
        channel.runner = asyncio.create_task(self._drive(channel), name=f"upload-{task.id}")

        logger.info("upload_submitted", task_id=task.id, filename=task.filename, size=task.size)
        return task.id

    def submit_many(self, files: Iterable[SourceFile]) -> BatchSubmission:
        """Submit every file; unsupported ones are reported instead of raised."""
        batch = BatchSubmission()
        for file in files:
            try:
                batch.task_ids.append(self.submit(file))
            except UnsupportedTypeError as exc:
                batch.rejected.append((file.name, exc))
        return batch

    # ── Observation ──────────────────────────────────────
    def snapshot(self, task_id: str) -> UploadSnapshot:
        return self._channel(task_id).latest

    def active(self) -> list[UploadSnapshot]:
        """Latest snapshot of every task not yet removed, in submission order."""
        return [channel.latest for channel in self._channels.values()]

    def subscribe(self, task_id: str) -> AsyncIterator[UploadSnapshot]:
        """Replay every snapshot of *task_id*, then follow it to its terminal one.

        Raises:
            NotFoundError: *task_id* is unknown (checked at call time).
        """
        return self._follow(self._channel(task_id))

    async def wait(self, task_id: str) -> UploadSnapshot:
        """Return the terminal snapshot of *task_id*."""
        snapshot = self.snapshot(task_id)
        async for snapshot in self.subscribe(task_id):
            pass
        return snapshot

    @staticmethod
    async def _follow(channel: _TaskChannel) -> AsyncIterator[UploadSnapshot]:
        index = 0
        while True:
            updated = channel.updated
            while index < len(channel.history):
                snapshot = channel.history[index]
                index += 1
                yield snapshot
                if snapshot.phase.terminal:
                    return
            await updated.wait()

    # ── Cancellation / removal ───────────────────────────
    async def cancel(self, task_id: str) -> bool:
        """Cancel an upload that has not finished yet.

        Returns True when the task moved to Cancelled and False when it had
        already reached a terminal phase (an indexed upload keeps its Document).

        Raises:
            NotFoundError: *task_id* is unknown.
        """
        channel = self._channel(task_id)
        task = channel.task
        if task.phase.terminal or channel.committing:
            logger.debug("upload_cancel_ignored", task_id=task_id, phase=task.phase.value)
            return False

        task.advance(Phase.cancelled)
        channel.publish()
        if channel.runner is not None and not channel.runner.done():
            channel.runner.cancel()
        logger.info("upload_cancelled", task_id=task_id, filename=task.filename)
        self._notifications.info("Upload cancelled", f"'{task.filename}' was not uploaded.")

        if task.handle is not None:
            await self._backend.cancel(task.handle)
        return True

    def acknowledge(self, task_id: str) -> bool:
        """Schedule removal of a finished task after the display grace period.

        Returns False (and schedules nothing) while the task is still running.
        """
        channel = self._channel(task_id)
        if not channel.task.phase.terminal:
            return False
        if channel.removal is None:
            loop = asyncio.get_running_loop()
            channel.removal = loop.call_later(self._display_grace, self._discard, task_id)
        return True

    async def remove(self, task_id: str) -> None:
        """Cancel *task_id* if it is still running and forget it immediately."""
        await self.cancel(task_id)
        self._discard(task_id)

    async def aclose(self) -> None:
        """Cancel every running upload and wait for the background tasks to end."""
        for task_id in list(self._channels):
            await self.cancel(task_id)
        runners = [c.runner for c in self._channels.values() if c.runner is not None]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        for channel in self._channels.values():
            if channel.removal is not None:
                channel.removal.cancel()

    # ── Background work ──────────────────────────────────
    async def _drive(self, channel: _TaskChannel) -> None:
        task = channel.task
        try:
            async with self._slots:
                handle = await self._transfer_with_retries(channel)
                self._apply(channel, Phase.processing)
                document = await self._backend.await_result(handle)
                await self._commit(channel, document)
        except asyncio.CancelledError:
            if not task.phase.terminal:
                task.advance(Phase.cancelled)
                channel.publish()
            raise
        except DocChatError as exc:
            self._fail(channel, exc.kind, exc.reason)
        except Exception as exc:  # noqa: BLE001
            logger.exception("upload_crashed", task_id=task.id, filename=task.filename)
            self._fail(channel, INTERNAL_ERROR, f"Unexpected error while uploading '{task.filename}': {exc}")

    async def _transfer_with_retries(self, channel: _TaskChannel) -> str:
        attempt = 0
        while True:
            self._apply(channel, Phase.transferring)
            try:
                return await self._transfer_once(channel)
            except TransferError as exc:
                attempt += 1
                if not exc.retryable or attempt >= self._max_attempts:
                    raise
                delay = backoff_delay(attempt - 1, self._backoff_base, self._backoff_max)
                logger.warning(
                    "upload_transfer_retry",
                    task_id=channel.task.id,
                    attempt=attempt,
                    delay=round(delay, 3),
                    reason=exc.reason,
                )
                await asyncio.sleep(delay)

    async def _transfer_once(self, channel: _TaskChannel) -> str:
        task = channel.task
        handle: str | None = None
        events = self._backend.transfer(task.payload, task.filename, mime_type_for(task.document_type))
        async with aclosing(events):
            async for event in events:
                if isinstance(event, TransferProgress):
                    if task.report_progress(event.fraction):
                        channel.publish()
                elif isinstance(event, TransferComplete):
                    handle = event.handle
                    if event.bytes_acknowledged != task.size:
                        await self._backend.cancel(handle)
                        raise TransferError(
                            f"Backend acknowledged {event.bytes_acknowledged} of {task.size} bytes "
                            f"for '{task.filename}'."
                        )
                    task.handle = handle
        if handle is None:
            raise TransferError(f"Transfer of '{task.filename}' ended without an acknowledgement.")
        return handle

    async def _commit(self, channel: _TaskChannel, document: Document) -> None:
        task = channel.task
        channel.committing = True
        try:
            appended = await self._registry.append(document)
        finally:
            channel.committing = False
        task.complete(document.id)
        channel.publish()
        logger.info(
            "upload_indexed",
            task_id=task.id,
            document_id=document.id,
            pages=document.page_count,
            new_document=appended,
        )
        self._notifications.success("Document ready", f"'{task.filename}' has been indexed.")

    # ── Helpers ──────────────────────────────────────────
    def _channel(self, task_id: str) -> _TaskChannel:
        channel = self._channels.get(task_id)
        if channel is None:
            raise NotFoundError(f"Upload task '{task_id}' not found.")
        return channel

    @staticmethod
    def _apply(channel: _TaskChannel, phase: Phase) -> None:
        if channel.task.advance(phase):
            channel.publish()

    def _fail(self, channel: _TaskChannel, kind: str, reason: str) -> None:
        task = channel.task
        if task.phase.terminal:
            return
        task.fail(kind, reason)
        channel.publish()
        logger.warning("upload_failed", task_id=task.id, filename=task.filename, kind=kind, reason=reason)
        self._notifications.error("Upload failed", reason, kind)

    def _discard(self, task_id: str) -> None:
        channel = self._channels.pop(task_id, None)
        if channel is not None and channel.removal is not None:
            channel.removal.cancel()
