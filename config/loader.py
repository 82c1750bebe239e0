"""
Configuration loading for docindex.

Resolves scan and index properties from built-in defaults, a JSON properties
file, ``DOCINDEX_*`` environment variables, and explicit overrides, in that
order, then validates them into ``ScanSettings`` and ``IndexConfig``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from docindex.errors import ConfigError
from docindex.models.config import IndexConfig, IndexProperty, ScanSettings
from .defaults import ENV_VAR_MAPPING, get_default_settings

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Validated configuration of a scan run"""
    model_config = ConfigDict(frozen=True)

    scan: ScanSettings
    index: IndexConfig

    def to_properties(self) -> Dict[str, Any]:
        """Flatten to a single property map, as read back by the loader"""
        properties = self.scan.model_dump(mode="json", by_alias=True)
        properties.update(self.index.to_properties())
        return properties


class ConfigurationLoader:
    """Load and validate scan configurations"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self._sections = {name: "scan" for name in ScanSettings.property_names()}
        self._sections.update({name: "index" for name in IndexProperty.names()})

    def load(
        self,
        config_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Mapping[str, Any]] = None
    ) -> AppConfig:
        """
        Resolve and validate a configuration.

        Args:
            config_file: Optional JSON properties file, flat or sectioned
            overrides: Property values taking precedence over everything else;
                None values are ignored

        Returns:
            Validated AppConfig

        Raises:
            ConfigError: if the file is unreadable or a value is invalid
        """
        data = get_default_settings()

        if config_file is not None:
            self._merge(data, self.load_properties(config_file))

        data = self._apply_env_overrides(data)

        if overrides:
            self._merge(data, {k: v for k, v in overrides.items() if v is not None})

        try:
            return AppConfig(
                scan=ScanSettings.model_validate(data["scan"]),
                index=IndexConfig.model_validate(data["index"])
            )
        except (ValidationError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def load_properties(self, config_file: Union[str, Path]) -> Dict[str, Any]:
        """Read a JSON properties file"""
        config_file = Path(config_file)
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Configuration file not found: {config_file}") from e
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"Failed to load config from {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration in {config_file} must be a JSON object")

        logger.debug(f"Loaded {len(data)} properties from {config_file}")
        return data

    def _merge(self, data: Dict[str, Dict[str, Any]], properties: Mapping[str, Any]) -> None:
        """Merge flat properties or ``scan``/``index`` sections into ``data``"""
        for key, value in properties.items():
            if key in data and isinstance(value, dict):
                self._merge(data, value)
                continue

            section = self._sections.get(key)
            if section is None:
                logger.warning(f"Ignoring unknown configuration property: {key}")
                continue
            data[section][key] = value

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = self.environ.get(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using a ``section.property`` path"""
        section, key = path.split('.', 1)
        converted_value = self._convert_env_value(value)
        if converted_value is not None:
            data.setdefault(section, {})[key] = converted_value

    def _convert_env_value(self, value: str) -> Optional[str]:
        """Normalize an environment value; type coercion is left to validation"""
        value = value.strip()
        return value or None

    def save(self, config: AppConfig, config_file: Union[str, Path]) -> bool:
        """Save configuration as a flat JSON properties file"""
        config_file = Path(config_file)
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config.to_properties(), f, indent=2, ensure_ascii=False)

            logger.info(f"Saved configuration to {config_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False
