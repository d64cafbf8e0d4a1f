"""
Writes canonical metadata, cover art and lyrics into the final container and
commits the result atomically to its output path.
"""

import asyncio
import base64
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Callable, List, Optional

import mutagen.id3 as id3
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.id3 import ID3NoHeaderError
from mutagen.mp4 import MP4, MP4Cover, MP4FreeForm
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

from tunefetch.exceptions import UnsupportedTagFormat, WriteFailure
from tunefetch.models.config import FLAC_MAX_BLOCKSIZE
from tunefetch.models.metadata import CanonicalMetadata, CommittedFile, has_value
from tunefetch.models.track import MediaBlob

from .artwork import prepare_cover
from .integrity import FileIntegrityChecker

log = logging.getLogger(__name__)

TEXT_FIELDS = (
    "title",
    "artist",
    "album",
    "album_artist",
    "track_no",
    "disc_no",
    "release_date",
    "genre",
    "isrc",
)

VORBIS_KEYS = {
    "title": "TITLE",
    "artist": "ARTIST",
    "album": "ALBUM",
    "album_artist": "ALBUMARTIST",
    "track_no": "TRACKNUMBER",
    "disc_no": "DISCNUMBER",
    "release_date": "DATE",
    "genre": "GENRE",
    "isrc": "ISRC",
}

MP4_KEYS = {
    "title": "\xa9nam",
    "artist": "\xa9ART",
    "album": "\xa9alb",
    "album_artist": "aART",
    "release_date": "\xa9day",
    "genre": "\xa9gen",
}

ID3_FRAMES = {
    "title": id3.TIT2,
    "artist": id3.TPE1,
    "album": id3.TALB,
    "album_artist": id3.TPE2,
    "track_no": id3.TRCK,
    "disc_no": id3.TPOS,
    "release_date": id3.TDRC,
    "genre": id3.TCON,
    "isrc": id3.TSRC,
}


def temp_path_for(output_path: Path) -> Path:
    """A hidden sibling of ``output_path`` used while tagging."""
    return output_path.with_name(f".{output_path.name}.{uuid.uuid4().hex[:8]}.part")


def _remove(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _commit(temp_path: Path, output_path: Path) -> None:
    """
    Moves ``temp_path`` to ``output_path``, failing if the target exists.

    A hard link claims the name atomically. Where links are unsupported an
    exclusively created placeholder claims it before the rename.
    """
    try:
        os.link(temp_path, output_path)
    except FileExistsError:
        raise WriteFailure(f"Refusing to overwrite existing file '{output_path}'") from None
    except OSError:
        try:
            with open(output_path, "xb"):
                pass
        except FileExistsError:
            raise WriteFailure(
                f"Refusing to overwrite existing file '{output_path}'"
            ) from None
        try:
            os.replace(temp_path, output_path)
        except OSError:
            _remove(output_path)
            raise
    else:
        _remove(temp_path)


class _FieldWriter:
    """Applies fields one at a time, turning unsupported ones into warnings."""

    def __init__(self, container: str):
        self.container = container
        self.warnings: List[str] = []

    def put(self, field: str, setter: Callable[[], None]) -> None:
        try:
            setter()
        except UnsupportedTagFormat as e:
            self.warnings.append(f"{field} not embedded: {e}")

    def skip(self, field: str) -> None:
        self.warnings.append(f"{field} not embedded: {self.container} cannot hold tags")


class TagEmbedder:
    """Writes tags with mutagen and commits the tagged file atomically."""

    def __init__(
        self,
        embed_tags: bool = True,
        embed_art: bool = True,
        embed_lyrics: bool = True,
        max_cover_bytes: int = FLAC_MAX_BLOCKSIZE,
        cover_max_dimension: int = 1400,
        verify: bool = True,
    ):
        self.embed_tags = embed_tags
        self.embed_art = embed_art
        self.embed_lyrics = embed_lyrics
        self.max_cover_bytes = min(max_cover_bytes, FLAC_MAX_BLOCKSIZE)
        self.cover_max_dimension = cover_max_dimension
        self.verify = verify

    async def embed(
        self, blob: MediaBlob, metadata: CanonicalMetadata, output_path: Path
    ) -> CommittedFile:
        """
        Copies ``blob`` next to ``output_path``, tags the copy and renames it
        into place. Nothing appears at ``output_path`` unless every step
        succeeded.

        Raises:
            WriteFailure: The output exists already or the disk write failed.
        """
        if output_path.exists():
            raise WriteFailure(f"Refusing to overwrite existing file '{output_path}'")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteFailure(f"Cannot create output directory: {e}") from e

        temp_path = temp_path_for(output_path)
        work = asyncio.ensure_future(
            asyncio.to_thread(self._write_temp, blob, metadata, temp_path)
        )
        try:
            warnings = await asyncio.shield(work)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; let it finish before cleanup.
            await asyncio.wait([work])
            _remove(temp_path)
            raise
        except BaseException:
            _remove(temp_path)
            raise

        try:
            _commit(temp_path, output_path)
            size = output_path.stat().st_size
        except OSError as e:
            _remove(temp_path)
            raise WriteFailure(f"Failed to commit '{output_path.name}': {e}") from e
        except WriteFailure:
            _remove(temp_path)
            raise

        for warning in warnings:
            log.debug(f"{output_path.name}: {warning}")
        return CommittedFile(path=output_path, size=size, warnings=tuple(warnings))

    def _write_temp(
        self, blob: MediaBlob, metadata: CanonicalMetadata, temp_path: Path
    ) -> List[str]:
        try:
            shutil.copyfile(blob.path, temp_path)
        except OSError as e:
            raise WriteFailure(f"Failed to stage '{temp_path.name}': {e}") from e

        try:
            warnings = (
                self.write_tags(temp_path, blob, metadata) if self.embed_tags else []
            )
        except MutagenError as e:
            raise WriteFailure(f"Failed to write tags: {e}") from e
        except OSError as e:
            raise WriteFailure(f"Failed to write tags: {e}") from e

        if self.verify and not FileIntegrityChecker.check(temp_path):
            raise WriteFailure(f"Tagged file failed integrity check: {temp_path.name}")
        return warnings

    def write_tags(
        self, path: Path, blob: MediaBlob, metadata: CanonicalMetadata
    ) -> List[str]:
        """Dispatches to the container's writer and returns field warnings."""
        writer = _FieldWriter(blob.container)
        cover = self._cover(metadata, writer)

        if blob.container == "mp3":
            self._tag_mp3(path, metadata, cover, writer)
        elif blob.container == "flac":
            self._tag_flac(path, metadata, cover, writer)
        elif blob.container == "m4a":
            self._tag_mp4(path, metadata, cover, writer)
        elif blob.container == "ogg" and blob.codec in ("opus", "vorbis"):
            self._tag_ogg(path, blob.codec, metadata, cover, writer)
        else:
            for field in self._requested_fields(metadata, cover):
                writer.skip(field)
        return writer.warnings

    def _requested_fields(
        self, metadata: CanonicalMetadata, cover: Optional[tuple[bytes, str]]
    ) -> List[str]:
        fields = [f for f in TEXT_FIELDS if has_value(getattr(metadata, f))]
        if cover:
            fields.append("cover_art")
        if self._lyrics(metadata):
            fields.append("lyrics")
        return fields

    def _cover(
        self, metadata: CanonicalMetadata, writer: _FieldWriter
    ) -> Optional[tuple[bytes, str]]:
        if not self.embed_art or not metadata.cover_art:
            return None
        try:
            return prepare_cover(
                metadata.cover_art, self.max_cover_bytes, self.cover_max_dimension
            )
        except UnsupportedTagFormat as e:
            writer.warnings.append(f"cover_art not embedded: {e}")
            return None

    def _lyrics(self, metadata: CanonicalMetadata) -> Optional[str]:
        if not self.embed_lyrics:
            return None
        return metadata.synced_lyrics or metadata.lyrics

    def _tag_mp3(self, path, metadata, cover, writer: _FieldWriter):
        try:
            audio = id3.ID3(path)
        except ID3NoHeaderError:
            audio = id3.ID3()

        for field in TEXT_FIELDS:
            value = getattr(metadata, field)
            if has_value(value):
                frame = ID3_FRAMES[field]
                writer.put(field, lambda f=frame, v=value: audio.add(f(encoding=3, text=str(v))))

        if lyrics := self._lyrics(metadata):
            audio.delall("USLT")
            writer.put(
                "lyrics",
                lambda: audio.add(id3.USLT(encoding=3, lang="eng", desc="", text=lyrics)),
            )

        if cover:
            data, mime = cover
            audio.delall("APIC")
            writer.put(
                "cover_art",
                lambda: audio.add(
                    id3.APIC(encoding=3, mime=mime, type=3, desc="Cover", data=data)
                ),
            )

        audio.save(filename=path, v2_version=3)

    def _tag_flac(self, path, metadata, cover, writer: _FieldWriter):
        audio = FLAC(path)
        self._put_vorbis_comments(audio, metadata, writer)

        if cover:
            data, mime = cover
            pic = self._picture(data, mime)
            audio.clear_pictures()
            writer.put("cover_art", lambda: audio.add_picture(pic))

        audio.save()

    def _tag_ogg(self, path, codec, metadata, cover, writer: _FieldWriter):
        audio = OggOpus(path) if codec == "opus" else OggVorbis(path)
        self._put_vorbis_comments(audio, metadata, writer)

        if cover:
            data, mime = cover
            encoded = base64.b64encode(self._picture(data, mime).write()).decode("ascii")

            def set_picture():
                audio["METADATA_BLOCK_PICTURE"] = [encoded]

            writer.put("cover_art", set_picture)

        audio.save()

    def _put_vorbis_comments(self, audio, metadata, writer: _FieldWriter):
        for field in TEXT_FIELDS:
            value = getattr(metadata, field)
            if has_value(value):
                key = VORBIS_KEYS[field]

                def set_comment(k=key, v=value):
                    audio[k] = [str(v)]

                writer.put(field, set_comment)

        if lyrics := self._lyrics(metadata):

            def set_lyrics():
                audio["LYRICS"] = [lyrics]

            writer.put("lyrics", set_lyrics)

    def _tag_mp4(self, path, metadata, cover, writer: _FieldWriter):
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()
        tags = audio.tags

        for field in TEXT_FIELDS:
            value = getattr(metadata, field)
            if not has_value(value):
                continue
            if field in MP4_KEYS:
                key = MP4_KEYS[field]

                def set_text(k=key, v=value):
                    tags[k] = [str(v)]

                writer.put(field, set_text)
            elif field in ("track_no", "disc_no"):
                key = "trkn" if field == "track_no" else "disk"

                def set_pair(k=key, v=value):
                    try:
                        tags[k] = [(int(v), 0)]
                    except (TypeError, ValueError) as e:
                        raise UnsupportedTagFormat(f"'{v}' is not a number") from e

                writer.put(field, set_pair)
            elif field == "isrc":

                def set_isrc(v=value):
                    tags["----:com.apple.iTunes:ISRC"] = [MP4FreeForm(str(v).encode("utf-8"))]

                writer.put(field, set_isrc)

        if lyrics := self._lyrics(metadata):

            def set_lyrics():
                tags["\xa9lyr"] = [lyrics]

            writer.put("lyrics", set_lyrics)

        if cover:
            data, mime = cover
            image_format = (
                MP4Cover.FORMAT_PNG if mime == "image/png" else MP4Cover.FORMAT_JPEG
            )

            def set_cover():
                tags["covr"] = [MP4Cover(data, imageformat=image_format)]

            writer.put("cover_art", set_cover)

        audio.save()

    @staticmethod
    def _picture(data: bytes, mime: str) -> Picture:
        pic = Picture()
        pic.type = 3
        pic.mime = mime
        pic.desc = "Cover"
        pic.data = data
        return pic
