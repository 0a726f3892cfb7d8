"""
Infrastructure adapters for archive verification and decompression tasks.
"""

import asyncio
import contextlib
import gzip
import logging
import zlib
from pathlib import Path
from typing import BinaryIO, Generator, Tuple

import zstandard

from ..application.domain import (
    ArchiveValidator,
    DecompressedSource,
    Decompressor,
    SourceArtifact,
)
from ..application.exceptions import IntegrityError, ProcessingError

_STREAM_ERRORS = (OSError, EOFError, zlib.error, zstandard.ZstdError)


def verified_marker(path: Path) -> Path:
    """The sidecar file recording a successful verification of `path`."""
    return path.with_suffix(path.suffix + ".verified")


def _codec_suffix(path: Path) -> str:
    """The compression suffix of `path`, looking through a '.part' name."""
    name = path.name
    if name.endswith(".part"):
        name = name[: -len(".part")]
    return Path(name).suffix


@contextlib.contextmanager
def open_archive(path: Path) -> Generator[BinaryIO, None, None]:
    """Open a compressed artifact as a decompressed binary stream."""
    codec = _codec_suffix(path)
    if codec == ".gz":
        with gzip.open(path, "rb") as reader:
            yield reader
    elif codec == ".zst":
        decompressor = zstandard.ZstdDecompressor()
        with open(path, "rb") as in_fh:
            with decompressor.stream_reader(in_fh) as reader:
                yield reader
    else:
        raise IntegrityError(f"Unsupported archive format: {path.name}")


class StreamValidator(ArchiveValidator):
    """
    An adapter that implements the ArchiveValidator port by decompressing
    the whole stream, which catches bad headers, truncation and CRC errors.
    """

    def __init__(self, force_check: bool = False, chunk_size: int = 1 << 20):
        """Initializes the validator."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.force_check = force_check
        self.chunk_size = chunk_size

    def _marker_is_current(self, path: Path) -> bool:
        marker = verified_marker(path)
        try:
            return marker.stat().st_mtime >= path.stat().st_mtime
        except FileNotFoundError:
            return False

    def _read_to_end(self, path: Path):
        """Perform the blocking I/O work of reading the full stream."""
        try:
            with open_archive(path) as reader:
                while reader.read(self.chunk_size):
                    pass
        except IntegrityError:
            raise
        except _STREAM_ERRORS as e:
            raise IntegrityError(
                f"Archive {path.name} is corrupt: {e}"
            ) from e

    def mark_verified(self, path: Path):
        verified_marker(path).touch()

    def check(self, path: Path):
        """
        Guarantee the archive is verified, reading it only if necessary.

        The '.verified' marker is trusted only while it is at least as new
        as the archive; 'force_check' always re-reads.

        Raises:
            IntegrityError: If verification fails.
        """

        if not self.force_check and self._marker_is_current(path):
            self.logger.debug(f"{path.name} already verified. Skipping.")
            return

        self.logger.info(f"Verifying {path.name}...")
        verified_marker(path).unlink(missing_ok=True)
        self._read_to_end(path)
        self.mark_verified(path)
        self.logger.info(f"{path.name} verified successfully.")

    async def verify(self, path: Path):
        await asyncio.to_thread(self.check, path)

    async def is_valid(self, path: Path) -> bool:
        if not path.is_file():
            return False
        try:
            await self.verify(path)
        except IntegrityError as e:
            self.logger.warning(str(e))
            return False
        return True


class TsvDecompressor(Decompressor):
    """
    An adapter that implements the Decompressor port, expanding a
    compressed TSV artifact into a plain file for the store's bulk loader.
    """

    def __init__(self, chunk_size: int = 1 << 20):
        """Initializes the decompressor."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.chunk_size = chunk_size

    def _copy_stream(
        self, source_path: Path, dest_path: Path
    ) -> Tuple[bytes, int]:
        """Copy decompressed bytes, returning the header line and line count."""
        header = b""
        lines = 0
        last = b"\n"
        with open_archive(source_path) as reader, open(dest_path, "wb") as out:
            while chunk := reader.read(self.chunk_size):
                if not header or not header.endswith(b"\n"):
                    header += chunk[: chunk.find(b"\n") + 1 or len(chunk)]
                lines += chunk.count(b"\n")
                last = chunk[-1:]
                out.write(chunk)
        if last != b"\n":
            lines += 1
        return header, lines

    def _blocking_decompress(
        self, source_path: Path, dest_path: Path
    ) -> DecompressedSource:
        """
        Orchestrates the decompression and header inspection.
        """
        try:
            self.logger.info(f"Decompressing {source_path.name}...")
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            header, lines = self._copy_stream(source_path, dest_path)
            columns = tuple(
                header.decode("utf-8").rstrip("\r\n").split("\t")
            )
        except (IntegrityError, UnicodeDecodeError) + _STREAM_ERRORS as e:
            dest_path.unlink(missing_ok=True)
            raise ProcessingError(
                f"Failed to decompress {source_path.name}: {e}"
            ) from e

        if not header.strip():
            dest_path.unlink(missing_ok=True)
            raise ProcessingError(f"{source_path.name} has no header row")

        row_count = max(lines - 1, 0)
        self.logger.info(
            f"Found {len(columns)} columns, {row_count} rows "
            f"in {source_path.name}"
        )
        return DecompressedSource(
            path=dest_path, columns=columns, row_count=row_count
        )

    async def decompress(
        self, artifact: SourceArtifact, destination: Path
    ) -> DecompressedSource:
        """
        Expand an artifact into `destination`.

        The heavy, blocking I/O work is delegated to a separate thread to
        avoid blocking the async event loop.

        Raises:
            ProcessingError: If decompression or header parsing fails.
        """
        return await asyncio.to_thread(
            self._blocking_decompress, artifact.path, destination
        )
