"""Launching kubescape as an asyncio subprocess."""

import asyncio
import logging
import os
from typing import Awaitable, Callable

from .errors import SubprocessFailedError
from .models import ProcessResult, ProcessSpec

logger = logging.getLogger(__name__)

ProcessRunner = Callable[[ProcessSpec], Awaitable[ProcessResult]]


async def run_process(spec: ProcessSpec) -> ProcessResult:
    """Run ``spec`` to completion and capture its output.

    Output is collected with ``communicate()``, so there is no ceiling on how
    much a cluster scan may print. A non-zero exit is returned, not raised.

    Raises:
        SubprocessFailedError: If the process cannot be started or times out.
    """
    argv = spec.argv
    env = {**os.environ, **spec.env} if spec.env else None
    logger.debug(f"Running: {' '.join(argv)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=str(spec.cwd) if spec.cwd else None,
        )
    except OSError as e:
        raise SubprocessFailedError(f"Failed to start {argv[0]}: {e}") from e

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=spec.timeout,
        )
    except asyncio.TimeoutError:
        try:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass
        raise SubprocessFailedError(
            f"{' '.join(argv)} timed out after {spec.timeout}s"
        ) from None

    result = ProcessResult(
        return_code=process.returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        logger.debug(f"{argv[0]} exited with code {result.return_code}")
    return result


async def run_checked(runner: ProcessRunner, spec: ProcessSpec) -> ProcessResult:
    """Run ``spec`` and raise SubprocessFailedError on a non-zero exit."""
    result = await runner(spec)
    if not result.ok:
        raise SubprocessFailedError(
            f"{' '.join(spec.argv)} exited with code {result.return_code}",
            return_code=result.return_code,
            stderr=result.stderr,
        )
    return result
