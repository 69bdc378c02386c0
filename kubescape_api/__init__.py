from .core.api import KubescapeApi
from .core.downloader import CancelToken
from .core.errors import KubescapeError, NotInstalledError
from .config import ConfigManager
from .models import ALL_FRAMEWORKS, LATEST, KubescapeConfig
from .ui import KubescapeUi, LoggingUi

__version__ = "1.0.0"
__all__ = [
    "KubescapeApi",
    "CancelToken",
    "KubescapeError",
    "NotInstalledError",
    "ConfigManager",
    "KubescapeConfig",
    "KubescapeUi",
    "LoggingUi",
    "ALL_FRAMEWORKS",
    "LATEST",
]
