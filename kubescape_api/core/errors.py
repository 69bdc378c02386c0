"""Exception hierarchy for the kubescape lifecycle manager."""

from typing import Optional


class KubescapeError(Exception):
    """Base class for every error raised by kubescape_api."""


class NotInstalledError(KubescapeError):
    """Kubescape is missing, unusable, or setup has not completed yet."""


class DownloadFailedError(KubescapeError):
    """A release asset or framework bundle could not be retrieved."""


class DownloadCancelledError(DownloadFailedError):
    """The download was aborted through its cancel token."""


class ReleaseLookupError(KubescapeError):
    """The upstream release registry could not be queried or parsed."""


class MalformedOutputError(KubescapeError):
    """Output from kubescape or the registry could not be understood."""


class SubprocessFailedError(KubescapeError):
    """Kubescape failed to start or exited with an error."""

    def __init__(
        self,
        message: str,
        return_code: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr
