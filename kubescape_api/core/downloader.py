"""Streaming download of release assets with progress and cancellation.

Data is streamed into a ``<name>.part`` sibling and moved over the target
only once the whole body has arrived, so a failed update never touches the
file already installed.
"""

import asyncio
import contextlib
import logging
import os
import stat
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

import httpx

from .errors import DownloadCancelledError, DownloadFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fraction in [0, 1], or None while the total size is unknown
ProgressCallback = Callable[[Optional[float]], None]

EXECUTABLE_MODE = stat.S_IRWXU | stat.S_IRWXG | stat.S_IXOTH

PARTIAL_SUFFIX = ".part"


class CancelToken:
    """Cancellation signal shared between a caller and a download.

    Cancelling aborts the in-flight request, even while it waits for
    headers or for the next chunk.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DownloadCancelledError("Download cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def progress_fraction(received: int, total: int) -> Optional[float]:
    """Fraction of ``total`` received so far; None when the size is unknown."""
    if total <= 0:
        return None
    return min(received / total, 1.0)


async def _until_cancelled(work: Awaitable[T], cancel: Optional[CancelToken]) -> T:
    """Await ``work``, aborting it as soon as ``cancel`` fires."""
    if cancel is None:
        return await work

    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            # let the stream close and the file handle go before cleanup
            await asyncio.gather(task, return_exceptions=True)

    if task.cancelled():
        raise DownloadCancelledError("Download cancelled")
    return task.result()


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


@contextlib.asynccontextmanager
async def _client_scope(
    client: Optional[httpx.AsyncClient],
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(follow_redirects=True, timeout=120) as owned:
        yield owned


async def _stream_to_file(
    client: httpx.AsyncClient,
    url: str,
    local_path: Path,
    cancel: Optional[CancelToken],
    progress: Optional[ProgressCallback],
) -> None:
    if cancel:
        cancel.raise_if_cancelled()

    async with client.stream("GET", url) as response:
        if not response.is_success:
            raise DownloadFailedError(
                f"Failed to download {url}: HTTP {response.status_code}"
            )

        try:
            total = int(response.headers.get("content-length") or 0)
        except ValueError:
            total = 0
        received = 0

        with open(local_path, "wb") as out:
            async for chunk in response.aiter_bytes():
                if cancel:
                    cancel.raise_if_cancelled()
                out.write(chunk)
                received += len(chunk)
                if progress:
                    progress(progress_fraction(received, total))
        if not received:
            raise DownloadFailedError(f"Empty response body from {url}")

    logger.debug(f"Downloaded {received} bytes from {url}")


async def download_file(
    url: str,
    target_dir: Union[str, Path],
    file_name: str,
    cancel: Optional[CancelToken] = None,
    progress: Optional[ProgressCallback] = None,
    executable: bool = False,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Download ``url`` into ``target_dir/file_name``.

    Returns the absolute path of the downloaded file, or an empty string if
    anything went wrong (HTTP error, invalid URL, stream failure,
    cancellation, or filesystem error). Failures are logged, never raised.
    On failure an existing ``target_dir/file_name`` is left untouched.
    """
    directory = Path(target_dir).resolve()
    local_path = directory / file_name
    partial_path = directory / f"{file_name}{PARTIAL_SUFFIX}"

    try:
        directory.mkdir(parents=True, exist_ok=True)
        async with _client_scope(client) as http:
            await _until_cancelled(
                _stream_to_file(http, url, partial_path, cancel, progress), cancel
            )

        if executable:
            partial_path.chmod(EXECUTABLE_MODE)
        os.replace(partial_path, local_path)
    except DownloadCancelledError:
        _discard(partial_path)
        logger.warning(f"Download of {url} cancelled")
        return ""
    except (httpx.HTTPError, httpx.InvalidURL, DownloadFailedError, OSError) as e:
        _discard(partial_path)
        logger.error(f"Could not download {url}: {e}")
        return ""
    except BaseException:
        _discard(partial_path)
        raise

    logger.info(f"Successfully downloaded {file_name} into {directory}")
    return str(local_path)
