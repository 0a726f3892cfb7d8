"""HTTP implementation of the Fetcher port."""

import asyncio
import contextlib
from pathlib import Path
from typing import AsyncGenerator, Generator, Optional

import httpx
from tqdm import tqdm

from ..application.domain import ArchiveValidator, Fetcher, SourceArtifact
from ..application.exceptions import DownloadError, FetchError

from .base_client import BaseClient
from .decorators import RETRYABLE_FETCH_ERRORS, linear_backoff_retrying
from .processing import verified_marker


class HttpFetcher(BaseClient, Fetcher):
    """A fetcher that downloads artifacts via HTTP atomically."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        validator: ArchiveValidator,
        timeout: float,
        chunk_size: int,
        attempts: int = 3,
        backoff_seconds: float = 5,
        transfer_timeout: Optional[float] = None,
        token: Optional[str] = None,
        show_progress: bool = True,
    ):
        """Initializes the fetcher adapter."""
        super().__init__(client, token)
        self.validator = validator
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.transfer_timeout = transfer_timeout
        self.show_progress = show_progress

    @contextlib.contextmanager
    def _atomic_target(self, destination: Path) -> Generator[Path, None, None]:
        """Yield the '.part' path for `destination`; remove leftovers on exit."""
        part_path = destination.with_suffix(destination.suffix + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            yield part_path
        finally:
            part_path.unlink(missing_ok=True)
            verified_marker(part_path).unlink(missing_ok=True)

    async def _stream_chunks(
        self, response: httpx.Response, target_file: Path,
    ):
        """Write the response body to `target_file`, yielding each chunk size."""
        with open(target_file, "wb") as f:
            async for chunk in response.aiter_bytes(self.chunk_size):
                await asyncio.to_thread(f.write, chunk)
                yield len(chunk)

    async def _consume_stream_with_progress(
        self,
        stream: AsyncGenerator[int, None],
        total_size: int,
        desc: str,
    ):
        """Drain `stream` into a progress bar and check the received size."""

        with tqdm(
            total=total_size or None,
            unit="B",
            unit_scale=True,
            desc=desc,
            disable=not self.show_progress,
        ) as progress_bar:
            received = 0
            async for progress in stream:
                received += progress
                progress_bar.update(progress)

        if total_size and received != total_size:
            raise DownloadError(
                f"Size mismatch for {desc}: {received} != {total_size}"
            )

    async def _stream_from_network(self, url: str, target_file: Path):
        """Open the request and stream the artifact body into `target_file`."""
        async with self.client.stream(
            "GET",
            url,
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=True,
        ) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("Content-Length") or 0)
            stream = self._stream_chunks(response, target_file)
            await self._consume_stream_with_progress(
                stream, total_size, target_file.name
            )

    async def _execute_atomic_download(self, artifact: SourceArtifact):
        """
        Download into a '.part' file, verify it, then replace the artifact.

        The existing artifact is only replaced once the new file has passed
        its integrity check, so a failed attempt never degrades it.
        """
        destination = artifact.path
        with self._atomic_target(destination) as part_path:
            await asyncio.wait_for(
                self._stream_from_network(artifact.url, part_path),
                timeout=self.transfer_timeout,
            )
            await self.validator.verify(part_path)
            part_path.replace(destination)
        self.validator.mark_verified(destination)

    async def fetch(self, artifact: SourceArtifact) -> SourceArtifact:
        """
        Download one artifact with bounded retries and linear backoff.

        This is the public method that fulfills the Fetcher port contract.

        Args:
            artifact: The artifact to (re-)download.

        Returns:
            The same artifact, now present and valid on disk.

        Raises:
            FetchError: If every attempt failed.
        """

        retrying = linear_backoff_retrying(self.attempts, self.backoff_seconds)
        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    self.logger.info(
                        f"Downloading {artifact.path.name} "
                        f"(attempt {number}/{self.attempts})..."
                    )
                    await self._execute_atomic_download(artifact)
        except RETRYABLE_FETCH_ERRORS as e:
            raise FetchError(
                f"Failed to download {artifact.path.name} after "
                f"{self.attempts} attempts: {type(e).__name__}: {e}",
                artifacts=[artifact.name],
            ) from e

        size = artifact.path.stat().st_size
        self.logger.info(f"Downloaded {artifact.path.name} ({size} bytes)")
        return artifact
