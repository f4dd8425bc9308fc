import os
import yaml
from pathlib import Path
from string import Template
from typing import Optional
from dotenv import load_dotenv
import structlog
from pydantic import ValidationError

from fscrape.models.config import EngineConfig

logger = structlog.get_logger()


class ConfigValidationError(Exception):
    """Configuration validation failed"""

    pass


class ConfigManager:
    """Loads the engine configuration from YAML and the environment"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.env_loaded = False
        self._config: Optional[EngineConfig] = None

    def load_config(self) -> EngineConfig:
        """Load and validate configuration

        Without a config path, defaults are used.

        Raises:
            FileNotFoundError: Config path given but missing
            ConfigValidationError: Unreadable, unparsable or invalid config
        """
        if self._config:
            return self._config

        # 1. Load environment
        if not self.env_loaded:  # pragma: no cover
            load_dotenv()
            self.env_loaded = True

        if self.config_path is None:
            self._config = EngineConfig()
            logger.info("config_defaults_used")
            return self._config

        # 2. Check file existence
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        # 3. Read YAML
        try:
            with open(self.config_path) as f:
                raw_content = f.read()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}")

        # 4. Substitute env vars
        try:
            # safe_substitute leaves unknown ${VAR} references untouched
            template = Template(raw_content)
            substituted_content = template.safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted_content) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            )

        if not isinstance(config_data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        # 5. Validate with Pydantic
        try:
            self._config = EngineConfig(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}")

        logger.info(
            "config_loaded",
            path=str(self.config_path),
            data_dir=self._config.store.data_dir,
        )
        return self._config

    def get_data_dir(self) -> Path:
        """Store directory, created on first use"""
        config = self.load_config()
        data_dir = Path(config.store.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir
