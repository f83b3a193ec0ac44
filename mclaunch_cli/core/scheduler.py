"""
Materializes a list of artifacts in the local store under bounded concurrency.
"""

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Iterable
from contextlib import suppress
from pathlib import Path
from typing import Optional, Protocol

from mclaunch_cli.exceptions import ArtifactWriteError, DigestMismatchError
from mclaunch_cli.models.report import DownloadTask, FetchReport, TaskState
from mclaunch_cli.models.version import Artifact
from mclaunch_cli.transfer.downloader import Downloader
from mclaunch_cli.transfer.integrity import IntegrityVerifier
from mclaunch_cli.utils.retry import RetryPolicy, is_transient

log = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 16


class FetchListener(Protocol):
    """Receives progress notifications from a running ``fetch_all``."""

    def fetch_started(self, total: int) -> None: ...

    def task_started(self, task: DownloadTask) -> None: ...

    def bytes_received(self, task: DownloadTask, count: int) -> None: ...

    def task_finished(self, task: DownloadTask) -> None: ...


def _should_retry(error: BaseException) -> bool:
    return isinstance(error, DigestMismatchError) or is_transient(error)


class DownloadScheduler:
    """
    Fetches artifacts with a fixed pool of worker coroutines.

    Files that are already present with the right digest are never fetched.
    Everything else is downloaded into a temporary file next to its
    destination, verified, and renamed into place. A failing artifact is
    recorded in the report and never stops the others.
    """

    def __init__(
        self,
        downloader: Downloader,
        max_workers: int = DEFAULT_MAX_WORKERS,
        retry_policy: Optional[RetryPolicy] = None,
        verifier: type[IntegrityVerifier] = IntegrityVerifier,
        listener: Optional[FetchListener] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.downloader = downloader
        self.max_workers = max_workers
        self.retry_policy = retry_policy or RetryPolicy()
        self.verifier = verifier
        self.listener = listener
        self.in_flight = 0
        self.peak_in_flight = 0

    async def fetch_all(
        self, artifacts: Iterable[Artifact], destination_root: Path
    ) -> FetchReport:
        """
        Makes every artifact present and verified under ``destination_root``.

        Returns once every task is Verified or Failed. Cancelling the call
        stops all workers and removes their temporary files before the
        cancellation propagates.
        """
        start_time = time.monotonic()
        self.in_flight = 0
        self.peak_in_flight = 0
        gate = asyncio.Semaphore(self.max_workers)

        tasks = [
            DownloadTask(artifact=a, destination=destination_root / a.path)
            for a in artifacts
        ]
        if self.listener:
            self.listener.fetch_started(len(tasks))
        cached = await asyncio.gather(*(self._check_cached(t, gate) for t in tasks))
        pending = [t for t, hit in zip(tasks, cached) if not hit]
        log.debug(
            f"{len(tasks) - len(pending)} of {len(tasks)} artifacts already present"
        )

        queue: asyncio.Queue[DownloadTask] = asyncio.Queue()
        for task in pending:
            queue.put_nowait(task)

        workers = [
            asyncio.create_task(self._worker(queue, gate), name=f"fetch-worker-{n}")
            for n in range(min(self.max_workers, len(pending)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        report = FetchReport(
            tasks=tasks,
            peak_in_flight=self.peak_in_flight,
            duration_seconds=time.monotonic() - start_time,
        )
        log.debug(
            f"Fetch finished: {report.fetched} fetched, {report.cache_hits} cached, "
            f"{len(report.failed)} failed, peak concurrency {report.peak_in_flight}"
        )
        return report

    async def _check_cached(self, task: DownloadTask, gate: asyncio.Semaphore) -> bool:
        artifact = task.artifact
        async with gate:
            present = await asyncio.to_thread(
                self.verifier.verify_file, task.destination, artifact.sha1, artifact.size
            )
        if present:
            task.cache_hit = True
            task.advance(TaskState.VERIFIED)
            self._notify_finished(task)
        return present

    async def _worker(self, queue: asyncio.Queue, gate: asyncio.Semaphore) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process(task, gate)
            finally:
                queue.task_done()

    async def _process(self, task: DownloadTask, gate: asyncio.Semaphore) -> None:
        task.advance(TaskState.IN_FLIGHT)
        if self.listener:
            self.listener.task_started(task)
        try:
            try:
                await asyncio.to_thread(
                    task.destination.parent.mkdir, parents=True, exist_ok=True
                )
            except OSError as e:
                raise ArtifactWriteError(
                    f"Cannot create {task.destination.parent}: {e}"
                ) from e
            await self.retry_policy.run(
                lambda: self._attempt(task, gate),
                retry_if=_should_retry,
                description=f"Download of {task.artifact.path}",
            )
        except Exception as e:
            task.advance(TaskState.FAILED, error=_describe(e))
            log.debug(f"Failed: {task.artifact.path} ({task.error})")
        else:
            task.advance(TaskState.VERIFIED)
        self._notify_finished(task)

    async def _attempt(self, task: DownloadTask, gate: asyncio.Semaphore) -> None:
        artifact = task.artifact
        destination = task.destination
        temp_path = destination.with_name(f"{destination.name}.{uuid.uuid4().hex[:8]}.part")
        task.attempts += 1

        def on_progress(count: int) -> None:
            task.bytes_downloaded += count
            if self.listener:
                self.listener.bytes_received(task, count)

        try:
            async with gate:
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    await self.downloader.fetch(artifact.url, temp_path, on_progress)
                finally:
                    self.in_flight -= 1

            if not await asyncio.to_thread(
                self.verifier.verify_file, temp_path, artifact.sha1, artifact.size
            ):
                raise DigestMismatchError(
                    f"Content of {artifact.path} does not match sha1 {artifact.sha1}"
                )
            try:
                os.replace(temp_path, destination)
            except OSError as e:
                raise ArtifactWriteError(f"Cannot write {destination}: {e}") from e
        except OSError as e:
            # Connection errors and timeouts are OSErrors too.
            if is_transient(e):
                raise
            raise ArtifactWriteError(f"Cannot write {destination}: {e}") from e
        finally:
            with suppress(OSError):
                temp_path.unlink(missing_ok=True)

    def _notify_finished(self, task: DownloadTask) -> None:
        if self.listener:
            self.listener.task_finished(task)


def _describe(error: BaseException) -> str:
    message = str(error) or type(error).__name__
    if isinstance(error, (DigestMismatchError, ArtifactWriteError)):
        return message
    return f"{type(error).__name__}: {message}"
