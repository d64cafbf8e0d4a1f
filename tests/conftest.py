"""Test fixtures and configuration."""

from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest
from fakes import FakeAudioTool, FakeExpander, FakeFetcher, FakeProvider, FakeSponsorBlock

from tunefetch.core.pipeline import Pipeline
from tunefetch.core.retry import RetryPolicy
from tunefetch.media.segments import SegmentFilter
from tunefetch.media.tagger import TagEmbedder
from tunefetch.media.transcoder import Transcoder
from tunefetch.metadata.resolver import MetadataResolver
from tunefetch.models.config import DownloadConfig
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import SourcePlatform
from tunefetch.sources.dispatcher import SourceStrategy
from tunefetch.storage.naming import OutputNamer


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., DownloadConfig]:
    """Create a config writing into the test's temporary directory."""

    def factory(**overrides) -> DownloadConfig:
        values = {
            "output_dir": tmp_path / "out",
            "retry_base_delay": 0,
            "retry_max_delay": 0,
            "verify_output": False,
            "sponsorblock_enabled": False,
            "lyrics_providers": [],
            "tag_providers": [],
        }
        values.update(overrides)
        return DownloadConfig(**values)

    return factory


@pytest.fixture
def make_pipeline(make_config) -> Callable[..., Pipeline]:
    """Build a pipeline wired to fakes instead of network and ffmpeg."""

    def factory(
        fetcher: Optional[FakeFetcher] = None,
        tool: Optional[FakeAudioTool] = None,
        providers: Sequence[FakeProvider] = (),
        sponsorblock: Optional[FakeSponsorBlock] = None,
        expanders: Sequence[FakeExpander] = (),
        **config_overrides,
    ) -> Pipeline:
        config = make_config(**config_overrides)
        fetcher = fetcher or FakeFetcher()
        tool = tool or FakeAudioTool()
        return Pipeline(
            config=config,
            sources=SourceStrategy({platform: fetcher for platform in SourcePlatform}, tool),
            resolver=MetadataResolver(
                providers,
                priority=config.field_priority,
                timeout=config.provider_timeout,
                fetch_cover=config.download_cover,
            ),
            segments=SegmentFilter(tool),
            transcoder=Transcoder(tool),
            tagger=TagEmbedder(
                embed_tags=config.embed_metadata,
                embed_art=config.download_cover,
                embed_lyrics=config.download_lyrics,
                verify=config.verify_output,
            ),
            namer=OutputNamer(config.output_dir, config.output_template),
            retry=RetryPolicy(
                config.max_retries, config.retry_base_delay, config.retry_max_delay
            ),
            sponsorblock=sponsorblock,
            expanders=tuple(expanders),
        )

    return factory


@pytest.fixture
def sample_fragment() -> MetadataFragment:
    """Create a native fragment with most fields filled."""
    return MetadataFragment(
        source="youtube",
        source_priority=50,
        title="Native Title",
        artist="Native Artist",
        album="Native Album",
        track_no=3,
        release_date="2021-05-04",
        duration=200.0,
    )
