"""User-feedback capability set.

The lifecycle core never prints. Everything the user should see goes through
a KubescapeUi, which an editor extension, a CLI or a test supplies.
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar

from .core.downloader import CancelToken, ProgressCallback

T = TypeVar("T")


class KubescapeUi(ABC):
    """Message sinks and long-running-work wrappers."""

    @abstractmethod
    def info(self, msg: str) -> None:
        """Show an informational message."""

    @abstractmethod
    def error(self, msg: str) -> None:
        """Show an error message."""

    @abstractmethod
    def debug(self, msg: str) -> None:
        """Record a diagnostic message."""

    @abstractmethod
    def show_help(self, message: str, url: str) -> None:
        """Show ``message`` with a link the user can open."""

    @abstractmethod
    async def slow(self, title: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work``, indicating that something is happening."""

    @abstractmethod
    async def progress(
        self,
        title: str,
        cancel: Optional[CancelToken],
        work: Callable[[ProgressCallback], Awaitable[T]],
    ) -> T:
        """Run ``work``, handing it a callback for fractional progress.

        The callback receives None while the total amount of work is unknown.
        """


class LoggingUi(KubescapeUi):
    """KubescapeUi that writes everything to the standard logging system."""

    def __init__(self, logger: Optional[logging.Logger] = None, step: float = 0.1):
        self.logger = logger or logging.getLogger("kubescape_api.ui")
        self.step = step

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def debug(self, msg: str) -> None:
        self.logger.debug(msg)

    def show_help(self, message: str, url: str) -> None:
        self.logger.info(f"{message} {url}")

    async def slow(self, title: str, work: Callable[[], Awaitable[T]]) -> T:
        self.logger.info(title)
        return await work()

    async def progress(
        self,
        title: str,
        cancel: Optional[CancelToken],
        work: Callable[[ProgressCallback], Awaitable[T]],
    ) -> T:
        self.logger.info(title)
        last = -1.0

        def report(fraction: Optional[float]) -> None:
            nonlocal last
            if fraction is None:
                return
            if fraction >= 1.0 or fraction - last >= self.step:
                last = fraction
                self.logger.info(f"{title}: {fraction:.0%}")

        return await work(report)
