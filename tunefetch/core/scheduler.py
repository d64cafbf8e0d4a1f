"""
The batch orchestrator: expands inputs, runs jobs on a bounded worker pool
and reports progress to observers.
"""

import asyncio
import contextlib
import functools
import logging
import time
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence

from tunefetch.models.config import DownloadConfig
from tunefetch.models.job import BatchResult, ExpansionFailure, ProgressEvent

from .expansion import BatchInput, RequestExpander
from .job import Job
from .pipeline import Pipeline, build_pipeline

log = logging.getLogger(__name__)

Observer = Callable[[ProgressEvent], None]


class BatchScheduler:
    """
    Runs many track jobs with bounded concurrency.

    A fixed number of workers pull jobs from a queue; each worker runs one
    job to a terminal state before taking the next. Every job runs in its
    own task so that it can be cancelled without touching the others.
    """

    def __init__(self, pipeline: Pipeline, observers: Sequence[Observer] = ()):
        self.pipeline = pipeline
        self._observers: List[Observer] = list(observers)
        self._jobs: Dict[str, Job] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._stopping = False
        self._active = 0
        self.peak_active = 0
        self.last_result: Optional[BatchResult] = None

    @classmethod
    def from_config(cls, config: DownloadConfig, observers: Sequence[Observer] = ()) -> "BatchScheduler":
        return cls(build_pipeline(config), observers)

    async def close(self) -> None:
        await self.pipeline.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)

    @property
    def active(self) -> int:
        """Number of worker slots currently occupied."""
        return self._active

    def _notify(self, event: ProgressEvent, sink: Optional[Observer]) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                log.warning(f"[yellow]Progress observer {observer!r} failed: {e}[/yellow]")
                log.debug("Observer traceback", exc_info=True)
        if sink is not None:
            sink(event)

    async def run(
        self, inputs: Sequence[BatchInput], concurrency_limit: Optional[int] = None
    ) -> BatchResult:
        """Runs the whole batch and returns one outcome per expanded request."""
        return await self._execute(inputs, concurrency_limit, None)

    async def stream(
        self, inputs: Sequence[BatchInput], concurrency_limit: Optional[int] = None
    ) -> AsyncIterator[ProgressEvent]:
        """
        Runs the batch while yielding every progress event.

        The iterator ends once every job is terminal; ``last_result`` then
        holds the BatchResult. Closing the iterator early cancels the batch.
        """
        events: asyncio.Queue = asyncio.Queue()
        done = object()
        task = asyncio.create_task(self._execute(inputs, concurrency_limit, events.put_nowait))
        task.add_done_callback(lambda _: events.put_nowait(done))
        try:
            while True:
                event = await events.get()
                if event is done:
                    break
                yield event
            task.result()
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _execute(
        self,
        inputs: Sequence[BatchInput],
        concurrency_limit: Optional[int],
        sink: Optional[Observer],
    ) -> BatchResult:
        config = self.pipeline.config
        limit = concurrency_limit if concurrency_limit is not None else config.concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        started_at = time.time()
        self._stopping = False
        self._active = 0
        self.peak_active = 0

        expander = RequestExpander(self.pipeline.expanders, config.default_target)
        requests, failures = await expander.expand(inputs)
        for failure in failures:
            log.warning(f"[yellow]⚠ Skipped {failure.origin}: {failure.reason}[/yellow]")

        emit = functools.partial(self._notify, sink=sink)
        jobs = [Job(request, self.pipeline, emit) for request in requests]
        self._jobs = {job.id: job for job in jobs}

        queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, len(jobs)))
        for job in jobs:
            job.announce()
            queue.put_nowait(job)

        worker_count = min(limit, len(jobs))
        if jobs:
            log.info(f"Starting {len(jobs)} job(s) with {worker_count} worker(s)")
        workers = [
            asyncio.create_task(self._worker(queue), name=f"worker-{n}")
            for n in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            self.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            # Anything still queued after a stop settles as cancelled
            for job in jobs:
                job.cancel_queued()
            self._remove_work_root()

        result = self._result(jobs, failures, started_at)
        self.last_result = result
        summary = result.summary()
        log.info(
            f"Batch finished: {summary['completed']} completed, {summary['failed']} failed, "
            f"{summary['cancelled']} cancelled, {summary['expansion_failures']} skipped"
        )
        return result

    async def _worker(self, queue: asyncio.Queue) -> None:
        while not self._stopping:
            try:
                job = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                if not job.state.is_terminal:
                    await self._run_job(job)
            finally:
                queue.task_done()

    async def _run_job(self, job: Job) -> None:
        task = asyncio.create_task(job.run(), name=f"job-{job.id}")
        self._running[job.id] = task
        self._active += 1
        self.peak_active = max(self.peak_active, self._active)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.wait({task})
            raise
        finally:
            self._active -= 1
            self._running.pop(job.id, None)
            # A task cancelled before its first step never reached Job.run()
            if task.cancelled():
                job.cancel_queued()

    def cancel(self) -> None:
        """Stops taking new jobs, cancels running ones and settles the queue."""
        self._stopping = True
        for job in self._jobs.values():
            if job.id not in self._running:
                job.cancel_queued()
        for task in list(self._running.values()):
            task.cancel()

    def cancel_job(self, job_id: str) -> bool:
        """Cancels one job, queued or running. Returns False if it already settled."""
        job = self._jobs.get(job_id)
        if job is None or job.state.is_terminal:
            return False
        task = self._running.get(job_id)
        if task is not None:
            task.cancel()
            return True
        return job.cancel_queued()

    def _remove_work_root(self) -> None:
        config = self.pipeline.config
        if config.temp_dir is not None:
            return
        with contextlib.suppress(OSError):
            config.work_dir.rmdir()

    def _result(
        self, jobs: List[Job], failures: List[ExpansionFailure], started_at: float
    ) -> BatchResult:
        return BatchResult(
            outcomes=tuple(job.outcome() for job in jobs),
            expansion_failures=tuple(failures),
            started_at=started_at,
            finished_at=time.time(),
            peak_active=self.peak_active,
        )
