"""
Configuration loader that combines YAML files with environment variables.
"""
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar
from functools import lru_cache
from pydantic import BaseModel, ValidationError

T = TypeVar('T', bound=BaseModel)

_TRUE_WORDS = ('true', 'yes', 'on')
_FALSE_WORDS = ('false', 'no', 'off')


class ConfigurationError(Exception):
    """Configuration loading or validation error."""
    pass


class ConfigLoader:
    """
    Load and validate configuration from YAML files and environment variables.

    Environment variables take precedence over YAML values.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize configuration loader.

        Args:
            config_dir: Directory containing YAML config files.
                       Defaults to /config relative to project root.
        """
        if config_dir is None:
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        if not self.config_dir.exists():
            raise ConfigurationError(f"Config directory not found: {self.config_dir}")

    def load_yaml(self, filename: str) -> Dict[str, Any]:
        """
        Load YAML configuration file.

        Args:
            filename: Name of YAML file (e.g., 'risk_manager.yaml')

        Returns:
            Dictionary with configuration values

        Raises:
            ConfigurationError: If file not found or invalid YAML
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise ConfigurationError(f"Config file not found: {filepath}")

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {filepath}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading {filepath}: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Top level of {filepath} must be a mapping")
        return config

    def merge_with_env(
        self,
        config: Dict[str, Any],
        env_prefix: str = "",
        current_path: str = ""
    ) -> Dict[str, Any]:
        """
        Merge configuration with environment variables.

        Uses the nested path for env var names, e.g. with prefix ``RISK_MANAGER_``
        the key ``max_portfolio_risk`` is overridden by ``RISK_MANAGER_MAX_PORTFOLIO_RISK``
        and ``signal_weights.rsi`` by ``MARKET_ANALYZER_SIGNAL_WEIGHTS_RSI``.

        Args:
            config: Configuration dictionary from YAML
            env_prefix: Prefix for environment variables
            current_path: Current path in nested config (internal use)

        Returns:
            Merged configuration dictionary
        """
        result = config.copy()

        for key, value in config.items():
            env_path = f"{current_path}_{key}".upper() if current_path else key.upper()
            full_env_name = f"{env_prefix}{env_path}".replace(".", "_")

            env_value = os.getenv(full_env_name)

            if env_value is not None:
                result[key] = self._parse_env_value(env_value)
            elif isinstance(value, dict):
                result[key] = self.merge_with_env(value, env_prefix, env_path)

        return result

    def _parse_env_value(self, value: str) -> Any:
        """
        Parse environment variable value to bool, int, float or string.

        Numeric strings stay numeric ("1" is 1, not True).
        """
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def load_and_validate(
        self,
        filename: str,
        model_class: Type[T],
        env_prefix: str = ""
    ) -> T:
        """
        Load YAML config, merge with environment variables, and validate.

        Args:
            filename: YAML config filename
            model_class: Pydantic model class for validation
            env_prefix: Prefix for environment variables (e.g., "RISK_MANAGER_")

        Returns:
            Validated configuration model instance

        Raises:
            ConfigurationError: If loading or validation fails
        """
        yaml_config = self.load_yaml(filename)
        merged_config = self.merge_with_env(yaml_config, env_prefix)

        try:
            validated_config = model_class(**merged_config)
            if hasattr(validated_config, 'validate_weights_sum'):
                validated_config.validate_weights_sum()
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed for {filename}:\n{e}"
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration in {filename}: {e}")

        return validated_config


# =============================================================================
# Cached loader instances
# =============================================================================

@lru_cache()
def get_config_loader(config_dir: Optional[str] = None) -> ConfigLoader:
    """
    Get cached configuration loader instance.

    Args:
        config_dir: Optional custom config directory path

    Returns:
        ConfigLoader instance
    """
    path = Path(config_dir) if config_dir else None
    return ConfigLoader(config_dir=path)


# =============================================================================
# Convenience functions for loading service configs
# =============================================================================

def load_market_analyzer_config(config_dir: Optional[str] = None):
    """Load and validate market analyzer configuration."""
    from .models import MarketAnalyzerConfig

    loader = get_config_loader(config_dir)
    return loader.load_and_validate(
        'market_analyzer.yaml',
        MarketAnalyzerConfig,
        env_prefix='MARKET_ANALYZER_'
    )


def load_risk_manager_config(config_dir: Optional[str] = None):
    """Load and validate risk manager configuration."""
    from .models import RiskManagerConfig

    loader = get_config_loader(config_dir)
    return loader.load_and_validate(
        'risk_manager.yaml',
        RiskManagerConfig,
        env_prefix='RISK_MANAGER_'
    )
