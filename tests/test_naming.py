"""Tests for output naming and reservations."""

import asyncio
from pathlib import Path

import pytest

from tunefetch.models.config import TEMPLATE_FIELDS
from tunefetch.models.metadata import CanonicalMetadata
from tunefetch.storage import naming
from tunefetch.storage.naming import OutputNamer
from tunefetch.utils.formatting import format_artists, split_artists


class TestRender:
    """Tests for template rendering."""

    def test_default_template(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path)

        path = namer.render(CanonicalMetadata(title="Song", artist="Band"), "mp3")

        assert path == tmp_path / "Band - Song.mp3"

    def test_nested_template_with_fallbacks(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path, "{album_artist}/{year} - {album}/{track}. {title}.{ext}")
        metadata = CanonicalMetadata(
            title="Song", artist="Band", album="Record", track_no=3, release_date="2019-04-01"
        )

        path = namer.render(metadata, "flac")

        assert path == tmp_path / "Band" / "2019 - Record" / "03. Song.flac"

    def test_missing_values_use_placeholders(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path, "{artist}/{album}/{title}.{ext}")

        path = namer.render(CanonicalMetadata(), "mp3")

        assert path == tmp_path / "Unknown Artist" / "Unknown Album" / "Unknown Title.mp3"

    def test_sanitizes_path_characters(self, tmp_path: Path) -> None:
        """Should keep a slash in a title from creating a directory."""
        namer = OutputNamer(tmp_path)

        path = namer.render(CanonicalMetadata(title="Either/Or?", artist="AC/DC"), "mp3")

        assert path.parent == tmp_path
        assert "/" not in path.name
        assert "?" not in path.name

    def test_unknown_placeholder(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path, "{mood} - {title}.{ext}")

        with pytest.raises(ValueError):
            namer.render(CanonicalMetadata(title="Song"), "mp3")

    def test_variables_match_configurable_placeholders(self, tmp_path: Path) -> None:
        names = OutputNamer(tmp_path).template_vars(CanonicalMetadata(), "mp3")

        assert set(names) == set(TEMPLATE_FIELDS)


class TestTargetFor:
    """Tests for caller-supplied output paths."""

    def test_relative_override_gets_extension(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path)

        assert namer.target_for(CanonicalMetadata(), "m4a", Path("mix/intro")) == (
            tmp_path / "mix" / "intro.m4a"
        )

    def test_directory_override_uses_template_name(self, tmp_path: Path) -> None:
        target_dir = tmp_path / "elsewhere"
        target_dir.mkdir()
        namer = OutputNamer(tmp_path / "out")

        path = namer.target_for(CanonicalMetadata(title="Song", artist="Band"), "mp3", target_dir)

        assert path == target_dir / "Band - Song.mp3"

    def test_override_with_suffix_is_kept(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path)

        assert namer.target_for(CanonicalMetadata(), "mp3", tmp_path / "x.mp3") == tmp_path / "x.mp3"


class TestReserve:
    """Tests for collision-free reservations."""

    @pytest.mark.asyncio
    async def test_same_name_gets_suffixes(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path)
        desired = tmp_path / "Band - Song.mp3"

        first, second, third = await asyncio.gather(
            namer.reserve(desired), namer.reserve(desired), namer.reserve(desired)
        )

        assert {first.name, second.name, third.name} == {
            "Band - Song.mp3",
            "Band - Song (1).mp3",
            "Band - Song (2).mp3",
        }

    @pytest.mark.asyncio
    async def test_existing_files_are_skipped(self, tmp_path: Path) -> None:
        (tmp_path / "Band - Song.mp3").write_bytes(b"x")
        namer = OutputNamer(tmp_path)

        path = await namer.reserve(tmp_path / "Band - Song.mp3")

        assert path.name == "Band - Song (1).mp3"

    @pytest.mark.asyncio
    async def test_last_suffix_is_usable(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(naming, "MAX_SUFFIX", 2)
        (tmp_path / "a.mp3").write_bytes(b"x")
        (tmp_path / "a (1).mp3").write_bytes(b"x")
        namer = OutputNamer(tmp_path)

        assert await namer.reserve(tmp_path / "a.mp3") == tmp_path / "a (2).mp3"

    @pytest.mark.asyncio
    async def test_gives_up_when_every_suffix_is_taken(self, tmp_path: Path, monkeypatch) -> None:
        """Should raise rather than hand out a name that exists."""
        monkeypatch.setattr(naming, "MAX_SUFFIX", 2)
        for name in ("a.mp3", "a (1).mp3", "a (2).mp3"):
            (tmp_path / name).write_bytes(b"x")
        namer = OutputNamer(tmp_path)

        with pytest.raises(FileExistsError):
            await namer.reserve(tmp_path / "a.mp3")
        assert namer.reserved == set()

    @pytest.mark.asyncio
    async def test_release_frees_name(self, tmp_path: Path) -> None:
        namer = OutputNamer(tmp_path)
        desired = tmp_path / "a.mp3"

        path = await namer.reserve(desired)
        namer.release(path)
        namer.release(path)

        assert namer.reserved == set()
        assert await namer.reserve(desired) == desired


class TestArtists:
    """Tests for artist credit helpers."""

    def test_split_artists(self) -> None:
        assert split_artists("A feat. B & C") == ["A", "B", "C"]
        assert split_artists("A, a") == ["A"]
        assert split_artists(None) == []

    def test_format_artists_single(self) -> None:
        assert format_artists("Band") == "Band"

    def test_format_artists_shortens_long_credits(self) -> None:
        assert format_artists("A, B; C & D") == "A, B, C et al."
        assert format_artists("") == "Unknown Artist"
