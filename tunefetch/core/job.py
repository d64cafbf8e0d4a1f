"""
Handles the processing of a single track, from acquisition to the committed,
tagged output file.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from rich.markup import escape

from tunefetch.exceptions import InvalidTransition, TuneFetchError
from tunefetch.media.audio_tool import extension_for
from tunefetch.models.job import JobOutcome, JobState, ProgressEvent, is_valid_transition
from tunefetch.models.track import SegmentSpec, TrackRequest

from .pipeline import Pipeline

log = logging.getLogger(__name__)

T = TypeVar("T")
EventSink = Callable[[ProgressEvent], None]


class Job:
    """
    One track's unit of work. Runs the stages strictly in pipeline order,
    owns a private work directory and always settles in a terminal state.
    """

    def __init__(self, request: TrackRequest, pipeline: Pipeline, emit: Optional[EventSink] = None):
        self.request = request
        self.pipeline = pipeline
        self.id = request.request_id
        self.state = JobState.QUEUED
        self.reason: Optional[str] = None
        self.retries = 0
        self.stage_retries: Dict[str, int] = {}
        self.warnings: List[str] = []
        self.output_path: Optional[Path] = None
        self._emit = emit or (lambda event: None)
        self._workdir: Optional[Path] = None
        self._reserved: Optional[Path] = None

    @property
    def workdir(self) -> Optional[Path]:
        return self._workdir

    def announce(self) -> None:
        """Emits the initial QUEUED event."""
        self._emit(ProgressEvent(self.id, self.state, None, self.request.label))

    def _transition(self, new: JobState, reason: Optional[str] = None) -> None:
        if not is_valid_transition(self.state, new):
            raise InvalidTransition(f"Job {self.id}: {self.state.name} -> {new.name}")
        previous, self.state = self.state, new
        if reason is not None:
            self.reason = reason
        self._emit(ProgressEvent(self.id, new, previous, self.request.label, reason=reason))

    def cancel_queued(self) -> bool:
        """Settles a job that never started as CANCELLED."""
        if self.state is not JobState.QUEUED:
            return False
        self._transition(JobState.CANCELLED, "Cancelled before start")
        return True

    async def run(self) -> JobOutcome:
        """Runs every stage; never raises, including on cancellation."""
        if self.state.is_terminal:
            return self.outcome()
        try:
            await self._execute()
        except asyncio.CancelledError:
            self._cleanup()
            self._transition(JobState.CANCELLED, "Cancelled")
            log.info(f"  [yellow]○ Cancelled:[/] {escape(self.request.label)}")
        except TuneFetchError as e:
            self._cleanup()
            self._transition(JobState.FAILED, str(e) or type(e).__name__)
            log.error(f"  [red]✗ Failed:[/] {escape(self.request.label)} ({escape(str(e))})")
        except Exception as e:
            self._cleanup()
            log.debug(f"Unexpected error in job {self.id}", exc_info=True)
            self._transition(JobState.FAILED, f"Unexpected error: {e}")
            log.error(f"  [red]✗ Failed:[/] {escape(self.request.label)} ({escape(str(e))})")
        else:
            self._cleanup()
        return self.outcome()

    async def _execute(self) -> None:
        pipeline, request = self.pipeline, self.request
        work_root = pipeline.config.work_dir
        work_root.mkdir(parents=True, exist_ok=True)
        self._workdir = Path(tempfile.mkdtemp(prefix=f"job-{self.id}-", dir=work_root))

        blob, native = await self._stage(JobState.FETCHING, "fetch", self._fetch)
        metadata = await self._stage(
            JobState.RESOLVING_METADATA,
            "resolve",
            lambda: pipeline.resolver.resolve(native, request),
        )
        self.warnings.extend(metadata.warnings)

        self._transition(JobState.FILTERING)
        segments = await self._segments(blob)
        trimmed = await self._attempt("filter", lambda: pipeline.segments.trim(blob, segments))

        target = request.target or pipeline.config.default_target
        converted = await self._stage(
            JobState.TRANSCODING,
            "transcode",
            lambda: pipeline.transcoder.convert(trimmed, target),
        )

        ext = extension_for(converted.container, converted.codec)
        desired = pipeline.namer.target_for(metadata, ext, request.output_path)
        self._reserved = await pipeline.namer.reserve(desired)
        committed = await self._stage(
            JobState.EMBEDDING,
            "embed",
            lambda: pipeline.tagger.embed(converted, metadata, self._reserved),
        )
        self.output_path = committed.path
        self.warnings.extend(committed.warnings)
        self._transition(JobState.COMPLETED)
        log.info(f"  [green]✓ Completed:[/] [dim]{escape(committed.path.name)}[/dim]")

    async def _fetch(self):
        # Each attempt starts from an empty work directory
        for leftover in self._workdir.iterdir():
            if leftover.is_dir():
                shutil.rmtree(leftover, ignore_errors=True)
            else:
                leftover.unlink(missing_ok=True)
        return await self.pipeline.sources.acquire(self.request, self._workdir)

    async def _segments(self, blob) -> SegmentSpec:
        client = self.pipeline.sponsorblock
        if client is None:
            return SegmentSpec()
        spec, warnings = await client.segments(blob.origin_id, blob.duration)
        self.warnings.extend(warnings)
        return spec

    async def _stage(self, state: JobState, name: str, factory: Callable[[], Awaitable[T]]) -> T:
        self._transition(state)
        return await self._attempt(name, factory)

    async def _attempt(self, name: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Runs one stage, repeating it for retryable errors within the policy."""
        policy = self.pipeline.retry
        while True:
            try:
                return await factory()
            except TuneFetchError as e:
                used = self.stage_retries.get(name, 0)
                if used >= policy.allowed_retries(e):
                    raise
                self.stage_retries[name] = used + 1
                self.retries += 1
                delay = policy.delay(used + 1, e)
                log.warning(
                    f"[yellow]{escape(self.request.label)}: {name} failed ({escape(str(e))}), "
                    f"retry {used + 1} in {delay:.1f}s[/yellow]"
                )
                await asyncio.sleep(delay)

    def _cleanup(self) -> None:
        """Removes the work directory and frees an uncommitted output name."""
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
        if self._reserved is not None:
            self.pipeline.namer.release(self._reserved)
            self._reserved = None

    def outcome(self) -> JobOutcome:
        return JobOutcome(
            job_id=self.id,
            request=self.request,
            state=self.state,
            output_path=self.output_path,
            reason=self.reason,
            retries=self.retries,
            stage_retries=dict(self.stage_retries),
            warnings=tuple(self.warnings),
        )
