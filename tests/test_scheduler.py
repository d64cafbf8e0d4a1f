"""Tests for the batch scheduler."""

import asyncio
import hashlib
from pathlib import Path

import pytest
from mutagen.id3 import ID3

from tunefetch.core.expansion import CsvImport, PlaylistReference
from tunefetch.core.scheduler import BatchScheduler
from tunefetch.exceptions import NotFound, ProviderError, RateLimited
from tunefetch.models.job import JobState
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import TrackRequest
from tunefetch.sources.base import PlaylistEntry

from fakes import FAKE_AUDIO, FakeAudioTool, FakeExpander, FakeFetcher, FakeProvider


def _requests(count: int) -> list[TrackRequest]:
    return [TrackRequest(source=f"track-{n}") for n in range(1, count + 1)]


def _leftovers(directory: Path) -> list[Path]:
    """Files that are not committed outputs (temp parts or scratch dirs)."""
    if not directory.exists():
        return []
    return [
        p for p in directory.rglob("*") if p.name.startswith(".") or "tunefetch-tmp" in str(p)
    ]


class TestConcurrency:
    """Worker pool sizing and slot accounting."""

    @pytest.mark.asyncio
    async def test_active_jobs_never_exceed_limit(self, make_pipeline) -> None:
        """Should keep at most `limit` jobs in flight and use all slots."""
        fetcher = FakeFetcher(delay=0.05)
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))

        result = await scheduler.run(_requests(10), concurrency_limit=3)

        assert len(result.completed) == 10
        assert result.peak_active == 3
        assert fetcher.peak <= 3

    @pytest.mark.asyncio
    async def test_limit_larger_than_batch(self, make_pipeline) -> None:
        """Should start only as many workers as there are jobs."""
        scheduler = BatchScheduler(make_pipeline(fetcher=FakeFetcher(delay=0.01)))

        result = await scheduler.run(_requests(2), concurrency_limit=8)

        assert len(result.completed) == 2
        assert result.peak_active == 2

    @pytest.mark.asyncio
    async def test_rejects_zero_limit(self, make_pipeline) -> None:
        scheduler = BatchScheduler(make_pipeline())

        with pytest.raises(ValueError):
            await scheduler.run(_requests(1), concurrency_limit=0)

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_pipeline) -> None:
        """Should return an empty result without starting workers."""
        result = await BatchScheduler(make_pipeline()).run([])

        assert result.outcomes == ()
        assert result.peak_active == 0


class TestRetries:
    """Per-stage retry behaviour seen through the batch result."""

    @pytest.mark.asyncio
    async def test_rate_limited_twice_then_completes(self, make_pipeline) -> None:
        """Should complete all three jobs, the second after two rate-limited fetches."""
        fetcher = FakeFetcher(
            delay=0.02,
            failures={
                "track-2": [
                    RateLimited("slow down", retry_after=0),
                    RateLimited("slow down", retry_after=0),
                ]
            },
        )
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))

        result = await scheduler.run(_requests(3), concurrency_limit=2)

        assert len(result.outcomes) == 3
        assert [o.state for o in result.outcomes] == [JobState.COMPLETED] * 3
        second = result.outcomes[1]
        assert second.retries == 2
        assert second.stage_retries == {"fetch": 2}
        assert result.outcomes[0].retries == 0
        assert result.outcomes[2].retries == 0
        assert fetcher.calls.count("track-2") == 3
        assert result.peak_active <= 2
        assert fetcher.peak <= 2
        assert result.summary()["retries"] == 2

    @pytest.mark.asyncio
    async def test_retry_counts_in_larger_batch(self, make_pipeline) -> None:
        fetcher = FakeFetcher(
            failures={"track-4": [RateLimited("slow down", retry_after=0)]}
        )
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))

        result = await scheduler.run(_requests(5), concurrency_limit=2)

        assert [o.state for o in result.outcomes] == [JobState.COMPLETED] * 5
        assert [o.retries for o in result.outcomes] == [0, 0, 0, 1, 0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_fails_job_only(self, make_pipeline) -> None:
        """Should fail one job after max_retries without affecting the rest."""
        fetcher = FakeFetcher(
            failures={"track-1": [RateLimited("busy", retry_after=0) for _ in range(5)]}
        )
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher, max_retries=2))

        result = await scheduler.run(_requests(3))

        failed = result.outcomes[0]
        assert failed.state is JobState.FAILED
        assert failed.retries == 2
        assert "busy" in failed.reason
        assert len(result.completed) == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, make_pipeline) -> None:
        fetcher = FakeFetcher(failures={"track-1": [NotFound("Video unavailable")]})
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))

        result = await scheduler.run(_requests(1))

        outcome = result.outcomes[0]
        assert outcome.state is JobState.FAILED
        assert outcome.retries == 0
        assert fetcher.calls == ["track-1"]


class TestCancellation:
    """Batch-wide and single-job cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_leaves_no_intermediate_files(self, make_pipeline, tmp_path: Path) -> None:
        """Should settle every job as CANCELLED and remove scratch files."""
        fetcher = FakeFetcher(delay=10)
        pipeline = make_pipeline(fetcher=fetcher)
        scheduler = BatchScheduler(pipeline)

        task = asyncio.create_task(scheduler.run(_requests(5), concurrency_limit=2))
        while fetcher.active < 2:
            await asyncio.sleep(0.01)
        scheduler.cancel()
        result = await asyncio.wait_for(task, timeout=5)

        assert [o.state for o in result.outcomes] == [JobState.CANCELLED] * 5
        assert _leftovers(tmp_path / "out") == []
        assert not pipeline.config.work_dir.exists()
        assert pipeline.namer.reserved == set()

    @pytest.mark.asyncio
    async def test_cancel_during_transcode(self, make_pipeline, tmp_path: Path) -> None:
        """Should cancel a job mid-stage and clean its work directory."""
        tool = FakeAudioTool(delay=10)
        pipeline = make_pipeline(tool=tool, default_format="opus", default_bitrate=128)
        scheduler = BatchScheduler(pipeline)
        events = []
        scheduler.add_observer(events.append)

        task = asyncio.create_task(scheduler.run(_requests(1)))
        while not tool.calls:
            await asyncio.sleep(0.01)
        scheduler.cancel()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.outcomes[0].state is JobState.CANCELLED
        assert events[-1].previous is JobState.TRANSCODING
        assert _leftovers(tmp_path / "out") == []

    @pytest.mark.asyncio
    async def test_cancel_single_job(self, make_pipeline) -> None:
        """Should cancel exactly one running job and let the others finish."""
        fetcher = FakeFetcher(delay=0.2)
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))
        started = []

        def observer(event):
            if event.state is JobState.FETCHING:
                started.append(event.job_id)

        scheduler.add_observer(observer)
        requests = _requests(3)
        task = asyncio.create_task(scheduler.run(requests, concurrency_limit=3))
        while len(started) < 3:
            await asyncio.sleep(0.01)

        assert scheduler.cancel_job(requests[1].request_id) is True
        result = await asyncio.wait_for(task, timeout=5)

        states = [o.state for o in result.outcomes]
        assert states == [JobState.COMPLETED, JobState.CANCELLED, JobState.COMPLETED]
        assert scheduler.cancel_job(requests[1].request_id) is False

    @pytest.mark.asyncio
    async def test_cancel_queued_job(self, make_pipeline) -> None:
        """Should settle a job that never started without running it."""
        fetcher = FakeFetcher(delay=0.05)
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))
        requests = _requests(3)

        def observer(event):
            if event.state is JobState.FETCHING and event.job_id == requests[0].request_id:
                scheduler.cancel_job(requests[2].request_id)

        scheduler.add_observer(observer)
        result = await scheduler.run(requests, concurrency_limit=1)

        assert result.outcomes[2].state is JobState.CANCELLED
        assert "track-3" not in fetcher.calls
        assert len(result.completed) == 2


class TestBatchInputs:
    """Expansion of CSV and playlist inputs."""

    @pytest.mark.asyncio
    async def test_csv_with_malformed_row(self, make_pipeline, tmp_path: Path) -> None:
        """Should complete 4 jobs and report row 3 as an expansion failure."""
        csv_path = tmp_path / "tracks.csv"
        csv_path.write_text(
            "Track Name,Artist Name(s),Album Name\n"
            "One,Artist A,Album\n"
            "Two,Artist B,Album\n"
            ",,Album\n"
            "Four,Artist D,Album\n"
            "Five,Artist E,Album\n",
            encoding="utf-8",
        )
        scheduler = BatchScheduler(make_pipeline())

        result = await scheduler.run([CsvImport(csv_path)])

        assert len(result.outcomes) == 4
        assert len(result.completed) == 4
        assert len(result.expansion_failures) == 1
        assert result.expansion_failures[0].origin == "tracks.csv:row 3"
        names = sorted(o.output_path.name for o in result.completed)
        assert names == [
            "Artist A - One.mp3",
            "Artist B - Two.mp3",
            "Artist D - Four.mp3",
            "Artist E - Five.mp3",
        ]

    @pytest.mark.asyncio
    async def test_playlist_with_unavailable_entry(self, make_pipeline) -> None:
        expander = FakeExpander(
            "https://list/",
            entries=[
                PlaylistEntry("https://list/#1", TrackRequest(source="a")),
                PlaylistEntry("https://list/#2", reason="Entry unavailable: [Deleted video]"),
                PlaylistEntry("https://list/#3", TrackRequest(source="b")),
            ],
        )
        scheduler = BatchScheduler(make_pipeline(expanders=[expander]))

        result = await scheduler.run([PlaylistReference("https://list/1")])

        assert len(result.completed) == 2
        assert result.expansion_failures[0].origin == "https://list/#2"

    @pytest.mark.asyncio
    async def test_unhandled_playlist_is_expansion_failure(self, make_pipeline) -> None:
        scheduler = BatchScheduler(make_pipeline())

        result = await scheduler.run([PlaylistReference("https://nowhere/1"), *_requests(1)])

        assert len(result.completed) == 1
        assert len(result.expansion_failures) == 1


class TestPipelineOutcomes:
    """End-to-end behaviour of jobs inside a batch."""

    @pytest.mark.asyncio
    async def test_short_circuit_keeps_source_bytes(self, make_pipeline) -> None:
        """Should skip the transcoder when the source already matches the target."""
        tool = FakeAudioTool()
        scheduler = BatchScheduler(make_pipeline(tool=tool, embed_metadata=False))

        result = await scheduler.run(_requests(1))

        outcome = result.outcomes[0]
        assert outcome.state is JobState.COMPLETED
        assert "transcode" not in tool.operations()
        digest = hashlib.sha256(outcome.output_path.read_bytes()).hexdigest()
        assert digest == hashlib.sha256(FAKE_AUDIO).hexdigest()

    @pytest.mark.asyncio
    async def test_unreachable_provider_leaves_field_empty(self, make_pipeline) -> None:
        """Should complete the job with a warning and no lyrics frame."""
        lrclib = FakeProvider("lrclib", error=ProviderError("lrclib lookup failed: timeout"))
        scheduler = BatchScheduler(make_pipeline(providers=[lrclib]))

        result = await scheduler.run(_requests(1))

        outcome = result.outcomes[0]
        assert outcome.state is JobState.COMPLETED
        assert any("lrclib" in w for w in outcome.warnings)
        tags = ID3(outcome.output_path)
        assert tags.getall("USLT") == []
        assert str(tags["TIT2"]) == "Title track-1"

    @pytest.mark.asyncio
    async def test_provider_lyrics_are_embedded(self, make_pipeline) -> None:
        lrclib = FakeProvider(
            "lrclib", MetadataFragment(source="lrclib", lyrics="la la la")
        )
        scheduler = BatchScheduler(make_pipeline(providers=[lrclib]))

        result = await scheduler.run(_requests(1))

        tags = ID3(result.outcomes[0].output_path)
        assert tags.getall("USLT")[0].text == "la la la"

    @pytest.mark.asyncio
    async def test_identical_metadata_gets_unique_names(self, make_pipeline) -> None:
        """Should never overwrite: the second file gets a numbered suffix."""
        fetcher = FakeFetcher(
            native=lambda request: MetadataFragment(source="youtube", title="Same", artist="Band")
        )
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))

        result = await scheduler.run(_requests(2), concurrency_limit=2)

        names = sorted(o.output_path.name for o in result.outcomes)
        assert names == ["Band - Same (1).mp3", "Band - Same.mp3"]

    @pytest.mark.asyncio
    async def test_one_outcome_per_request(self, make_pipeline) -> None:
        fetcher = FakeFetcher(failures={"track-3": [NotFound("gone")]})
        scheduler = BatchScheduler(make_pipeline(fetcher=fetcher))
        requests = _requests(4)

        result = await scheduler.run(requests)

        assert [o.job_id for o in result.outcomes] == [r.request_id for r in requests]
        assert result.summary()["completed"] == 3
        assert result.summary()["failed"] == 1


class TestObservers:
    """Progress event delivery."""

    @pytest.mark.asyncio
    async def test_stream_yields_every_transition(self, make_pipeline) -> None:
        scheduler = BatchScheduler(make_pipeline())
        requests = _requests(2)

        events = [event async for event in scheduler.stream(requests)]

        for request in requests:
            states = [e.state for e in events if e.job_id == request.request_id]
            assert states == [
                JobState.QUEUED,
                JobState.FETCHING,
                JobState.RESOLVING_METADATA,
                JobState.FILTERING,
                JobState.TRANSCODING,
                JobState.EMBEDDING,
                JobState.COMPLETED,
            ]
        assert scheduler.last_result is not None
        assert len(scheduler.last_result.completed) == 2

    @pytest.mark.asyncio
    async def test_failing_observer_is_ignored(self, make_pipeline) -> None:
        def broken(event):
            raise RuntimeError("display crashed")

        seen = []
        scheduler = BatchScheduler(make_pipeline(), observers=[broken, seen.append])

        result = await scheduler.run(_requests(2))

        assert len(result.completed) == 2
        assert len(seen) == 14

    @pytest.mark.asyncio
    async def test_removed_observer_gets_nothing(self, make_pipeline) -> None:
        seen = []
        scheduler = BatchScheduler(make_pipeline(), observers=[seen.append])
        scheduler.remove_observer(seen.append)

        await scheduler.run(_requests(1))

        assert seen == []
