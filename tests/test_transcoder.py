"""Tests for the transcoder and the ffmpeg command builders."""

from pathlib import Path

import pytest

from tunefetch.exceptions import ProcessFailure, TranscodeFailure, UnsupportedConversion
from tunefetch.media.audio_tool import (
    build_transcode_command,
    build_trim_command,
    build_trim_filter,
    extension_for,
    normalize_container,
    parse_probe,
)
from tunefetch.media.transcoder import Transcoder, satisfies
from tunefetch.models.track import FormatSpec, MediaBlob

from fakes import FAKE_AUDIO, FakeAudioTool

MP3_320 = FormatSpec("mp3", "mp3", 320)
MP3_128 = FormatSpec("mp3", "mp3", 128)
FLAC = FormatSpec("flac", "flac")
OPUS_128 = FormatSpec("ogg", "opus", 128)


def _blob(tmp_path: Path, container="mp3", codec="mp3", bitrate=320) -> MediaBlob:
    path = tmp_path / f"source.{container}"
    path.write_bytes(FAKE_AUDIO)
    return MediaBlob(path=path, container=container, codec=codec, duration=200.0, bitrate=bitrate)


class TestSatisfies:
    """Tests for the no-op short circuit."""

    def test_same_format_and_bitrate(self, tmp_path: Path) -> None:
        assert satisfies(_blob(tmp_path), MP3_320)

    def test_higher_source_bitrate_needs_transcode(self, tmp_path: Path) -> None:
        assert not satisfies(_blob(tmp_path, bitrate=320), MP3_128)

    def test_bitrate_within_tolerance(self, tmp_path: Path) -> None:
        assert satisfies(_blob(tmp_path, bitrate=136), MP3_128)

    def test_unknown_bitrate_is_accepted(self, tmp_path: Path) -> None:
        assert satisfies(_blob(tmp_path, bitrate=None), MP3_128)

    def test_lossless_matches_lossless(self, tmp_path: Path) -> None:
        assert satisfies(_blob(tmp_path, "flac", "flac", None), FLAC)

    def test_different_codec(self, tmp_path: Path) -> None:
        assert not satisfies(_blob(tmp_path, "webm", "opus", 160), OPUS_128)


class TestTranscoder:
    """Tests for Transcoder.convert."""

    @pytest.mark.asyncio
    async def test_short_circuit_returns_input(self, tmp_path: Path) -> None:
        """Should not invoke the tool when the blob already matches."""
        tool = FakeAudioTool()
        blob = _blob(tmp_path)

        result = await Transcoder(tool).convert(blob, MP3_320)

        assert result is blob
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_converts_to_target(self, tmp_path: Path) -> None:
        tool = FakeAudioTool()
        blob = _blob(tmp_path, "webm", "opus", 160)

        result = await Transcoder(tool).convert(blob, MP3_128)

        operation, params = tool.calls[0]
        assert operation == "transcode"
        assert params["target"] == MP3_128
        assert params["output"].suffix == ".mp3"
        assert (result.container, result.codec, result.bitrate) == ("mp3", "mp3", 128)
        assert result.duration == 200.0

    @pytest.mark.asyncio
    async def test_lossless_target_has_no_bitrate(self, tmp_path: Path) -> None:
        result = await Transcoder(FakeAudioTool()).convert(
            _blob(tmp_path, "wav", "pcm_s16le", 1411), FLAC
        )

        assert result.bitrate is None
        assert result.path.suffix == ".flac"

    @pytest.mark.asyncio
    async def test_process_failure_becomes_transcode_failure(self, tmp_path: Path) -> None:
        tool = FakeAudioTool(transcode_failures=1)

        with pytest.raises(TranscodeFailure) as exc_info:
            await Transcoder(tool).convert(_blob(tmp_path), OPUS_128)

        assert isinstance(exc_info.value.__cause__, ProcessFailure)

    @pytest.mark.asyncio
    async def test_undecodable_source(self, tmp_path: Path) -> None:
        tool = FakeAudioTool()

        with pytest.raises(UnsupportedConversion):
            await Transcoder(tool).convert(_blob(tmp_path, "amr", "amr_nb", 12), MP3_128)
        assert tool.calls == []

    def test_unknown_target(self, tmp_path: Path) -> None:
        with pytest.raises(UnsupportedConversion):
            Transcoder(FakeAudioTool()).check_path(
                _blob(tmp_path), FormatSpec("m4a", "opus", 128)
            )


class TestCommands:
    """Tests for ffmpeg/ffprobe command construction."""

    def test_trim_filter(self) -> None:
        assert build_trim_filter([(1.0, 2.5), (10.0, 12.0)]) == (
            "aselect='not(between(t,1.000,2.500)+between(t,10.000,12.000))',asetpts=N/SR/TB"
        )

    def test_trim_command_reencodes_with_bitrate(self) -> None:
        cmd = build_trim_command(
            "ffmpeg", Path("in.mp3"), Path("out.mp3"), [(0.0, 5.0)], "mp3", 192
        )

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[-1] == "out.mp3"

    def test_trim_command_unknown_codec(self) -> None:
        with pytest.raises(ProcessFailure):
            build_trim_command("ffmpeg", Path("in"), Path("out"), [(0.0, 1.0)], "wmav2")

    def test_transcode_command_for_opus(self) -> None:
        cmd = build_transcode_command("ffmpeg", Path("in.webm"), Path("out.opus"), OPUS_128)

        assert cmd[cmd.index("-c:a") + 1] == "libopus"
        assert cmd[cmd.index("-b:a") + 1] == "128k"
        assert cmd[cmd.index("-f") + 1] == "ogg"
        assert "-map_metadata" in cmd

    def test_transcode_command_lossless_has_no_bitrate(self) -> None:
        cmd = build_transcode_command("ffmpeg", Path("in.wav"), Path("out.flac"), FLAC)

        assert "-b:a" not in cmd


class TestProbeParsing:
    """Tests for ffprobe JSON parsing."""

    def test_parse_probe(self) -> None:
        payload = {
            "streams": [
                {"codec_type": "video", "codec_name": "mjpeg"},
                {"codec_type": "audio", "codec_name": "aac", "bit_rate": "256000"},
            ],
            "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "201.5"},
        }

        result = parse_probe(payload)

        assert result.container == "m4a"
        assert result.codec == "aac"
        assert result.duration == 201.5
        assert result.bitrate == 256

    def test_parse_probe_without_audio(self) -> None:
        with pytest.raises(ProcessFailure):
            parse_probe({"streams": [{"codec_type": "video"}], "format": {}})

    def test_normalize_container(self) -> None:
        assert normalize_container("matroska,webm") == "webm"
        assert normalize_container("mp3") == "mp3"
        assert normalize_container("xyz") == "xyz"

    def test_extension_for(self) -> None:
        assert extension_for("ogg", "opus") == "opus"
        assert extension_for("m4a", "aac") == "m4a"
        assert extension_for("mp3", "mp3") == "mp3"
