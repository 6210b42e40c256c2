"""
goal: the file-source boundary of the pipeline. reads uploaded streams or files on disk into memory in 1 MB
chunks and rejects anything above the configured cap before it reaches feature extraction. unreadable input
raises OSError, which callers surface as "analysis failed, retry" instead of scoring anything.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import os  # for expanding ~ and environment variables in paths
import pathlib  # for normalizing file paths
from typing import BinaryIO  # type hint for readable binary streams

from algorithm.errors import FileTooLargeError
from algorithm.feature_extractor import RawFile

CHUNK_SIZE = 1024 * 1024  # read 1 MB at a time


class FileSource:
    """Reads raw bytes for analysis, enforcing a maximum size."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = int(max_bytes)  # uploads above this are refused

    @staticmethod
    def normalize_path(raw: str) -> str:
        # expand ~ and %ENVVARS%/$VARS, strip stray quotes, normalize slashes
        p = (raw or "").strip().strip('"')
        return str(pathlib.Path(os.path.expandvars(os.path.expanduser(p))))

    def _read_capped(self, stream: BinaryIO) -> bytes:
        chunks: list[bytes] = []  # collected pieces of the file
        total = 0  # bytes read so far
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):  # until the stream is empty
            total += len(chunk)
            if total > self.max_bytes:  # stop as soon as we know it is too big
                raise FileTooLargeError(total, self.max_bytes)
            chunks.append(chunk)
        return b"".join(chunks)

    def read_stream(self, name: str, stream: BinaryIO) -> RawFile:
        """Read an already-open binary stream (e.g. an upload)."""
        return RawFile(name=name, data=self._read_capped(stream))

    def read_path(self, path: str) -> RawFile:
        """Read a file from disk. Missing or unreadable files raise OSError."""
        p = self.normalize_path(path)
        size = os.stat(p).st_size  # fail fast on missing files and obviously huge ones
        if size > self.max_bytes:
            raise FileTooLargeError(size, self.max_bytes)
        with open(p, "rb") as f:  # open the file in binary read mode
            return RawFile(name=os.path.basename(p), data=self._read_capped(f))
