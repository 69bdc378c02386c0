import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .models import KubescapeConfig, LoggingConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "KUBESCAPE_API_"


class ConfigManager:
    """Loads kubescape settings from a YAML file plus KUBESCAPE_API_* variables.

    File layout::

        kubescape:
          version: latest
          base_directory: ~/.kubescape/bin
          frameworks_directory: ~/.kubescape
          required_frameworks: [nsa, mitre]
          scan_frameworks: [all]
        logging:
          level: INFO
          logs_dir: ./logs
    """

    def __init__(self, config_path: str = "kubescape.yaml"):
        self.config_path = Path(config_path)
        self.config: Optional[KubescapeConfig] = None
        self.logging = LoggingConfig()
        self.load_config()

    def load_config(self) -> KubescapeConfig:
        """Load configuration from file (if present) and environment"""
        config_data: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            if not isinstance(config_data, dict):
                raise ValueError(f"Invalid configuration file: {self.config_path}")
        else:
            logger.debug(f"Configuration file not found: {self.config_path}, using defaults")

        # Merge with environment variables
        config_data = self._merge_env_vars(config_data)

        try:
            self.config = KubescapeConfig(**(config_data.get('kubescape') or {}))
            self.logging = LoggingConfig(**(config_data.get('logging') or {}))
        except ValidationError as e:
            raise ValueError(
                f"Invalid configuration ({self.config_path} or {ENV_PREFIX}* variables): {e}"
            ) from e
        return self.config

    def _merge_env_vars(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge environment variables with configuration.

        KUBESCAPE_API_LOGGING_LEVEL sets logging.level; any other
        KUBESCAPE_API_<KEY> sets kubescape.<key>.
        """
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            config_key = key[len(ENV_PREFIX):].lower()
            if config_key.startswith('logging_'):
                section, nested_key = 'logging', config_key[len('logging_'):]
            else:
                section, nested_key = 'kubescape', config_key

            if not isinstance(config_data.get(section), dict):
                config_data[section] = {}
            config_data[section][nested_key] = value

        return config_data

    def get_config(self) -> KubescapeConfig:
        """Get current configuration"""
        if self.config is None:
            self.load_config()
        return self.config

    def update_config(self, updates: Dict[str, Any]):
        """Update kubescape settings and persist them"""
        config = self.get_config()
        self.config = KubescapeConfig(**{**config.model_dump(), **updates})
        self.save_config()

    def save_config(self):
        """Save configuration to file"""
        if self.config is None:
            return

        config_dict = {
            'kubescape': self.config.model_dump(exclude_none=True),
            'logging': self.logging.model_dump(),
        }

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False)

    def create_directories(self):
        """Create the log directory named by the configuration"""
        Path(self.logging.logs_dir).mkdir(parents=True, exist_ok=True)
