"""Audio decoding and source loading utilities."""

from __future__ import annotations

import logging
import os
import tempfile
import urllib.request
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

import librosa
import numpy as np

from trackdiff.analysis.errors import DecodeError, SourceError
from trackdiff.analysis.models import AudioBuffer
from trackdiff.config import settings

logger = logging.getLogger(__name__)

_REMOTE_SCHEMES = ("http://", "https://", "file://")


def _load(path: str, sr: int) -> AudioBuffer:
    try:
        audio, sample_rate = librosa.load(path, sr=sr, mono=False)
    except Exception as e:
        raise DecodeError(f"Could not decode audio: {e}") from e

    audio = np.atleast_2d(np.asarray(audio, dtype=np.float32))
    return AudioBuffer(sample_rate=int(sample_rate), channels=[ch for ch in audio])


@contextmanager
def decoded(
    data: bytes,
    sr: int | None = None,
    suffix: str = "",
) -> Iterator[AudioBuffer]:
    """Decode audio bytes for the duration of a ``with`` block.

    The bytes are spooled to a temporary file (librosa needs a file path for
    some formats). Both the temporary file and the decoded samples are
    released when the block exits, whether it succeeds or raises.

    Parameters
    ----------
    data:
        Raw audio file contents.
    sr:
        Target sample rate. Defaults to ``settings.sample_rate``.
    suffix:
        File extension hint such as ``".mp3"``.

    Raises
    ------
    DecodeError
        If the bytes are empty, corrupt, or in an unsupported format.
    """
    if not data:
        raise DecodeError("No audio data")

    tmp_path: str | None = None
    buffer: AudioBuffer | None = None
    try:
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(data)
            tmp_path = tmp.name
        buffer = _load(tmp_path, sr or settings.sample_rate)
        logger.debug(
            "Decoded %.1fs of audio (%d channel(s) at %dHz)",
            buffer.duration, len(buffer.channels), buffer.sample_rate,
        )
        yield buffer
    finally:
        if buffer is not None:
            buffer.release()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning("Could not remove temp file %s", tmp_path)


def decode(data: bytes, sr: int | None = None, suffix: str = "") -> AudioBuffer:
    """Decode audio bytes into a standalone AudioBuffer."""
    with decoded(data, sr=sr, suffix=suffix) as buffer:
        return AudioBuffer(sample_rate=buffer.sample_rate, channels=list(buffer.channels))


def fetch_audio(url: str, timeout: float | None = None, max_bytes: int | None = None) -> bytes:
    """Download audio bytes from a remote preview URL."""
    limit = max_bytes if max_bytes is not None else settings.max_download_mb * 1024 * 1024
    request = urllib.request.Request(url, headers={"User-Agent": "trackdiff/0.1"})
    with urllib.request.urlopen(request, timeout=timeout or settings.download_timeout) as response:
        data = response.read(limit + 1)
    if len(data) > limit:
        raise SourceError(f"Remote audio exceeds {limit} bytes: {url}")
    logger.info("Fetched %d bytes from %s", len(data), url)
    return data


def read_source(source: Union[str, Path]) -> bytes:
    """Read audio bytes from a local path or a remote URL."""
    src = str(source)
    if src.startswith(_REMOTE_SCHEMES):
        return fetch_audio(src)
    return Path(src).read_bytes()


def source_suffix(source: Union[str, Path]) -> str:
    """Return the lower-cased file extension of a path or URL, if any."""
    name = str(source).split("?", 1)[0].rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return "." + name.rsplit(".", 1)[-1].lower()
