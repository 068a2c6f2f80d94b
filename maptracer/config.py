"""Configuration management for maptracer.

Loads environment variables (optionally from a .env file) and provides
centralized access to analysis limits.
"""
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from maptracer.analyzer.run import AnalysisSettings

__version__ = "0.3.0"

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


class Config:
    """Configuration loader with environment variable support."""

    def __init__(self, env_path: Optional[Path] = None):
        """Initialize config by loading a .env file.

        Args:
            env_path: Explicit .env file (defaults to ./.env in the working directory)
        """
        env_path = Path(env_path) if env_path else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)

    @staticmethod
    def _int(name: str, default: int, minimum: int = 1) -> int:
        """Read a positive integer variable.

        Raises:
            ValueError: If the value is not an integer or is below minimum
        """
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {raw!r}") from None
        if value < minimum:
            raise ValueError(f"{name} must be >= {minimum}, got {value}")
        return value

    @staticmethod
    def _bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"{name} must be a boolean, got {raw!r}")

    @property
    def max_depth(self) -> int:
        """Maximum call hierarchy depth (MAPTRACER_MAX_DEPTH, default 12)."""
        return self._int("MAPTRACER_MAX_DEPTH", 12)

    @property
    def caller_limit(self) -> int:
        """Maximum distinct callers expanded per method."""
        return self._int("MAPTRACER_CALLER_LIMIT", 300)

    @property
    def call_site_limit(self) -> int:
        """Maximum call sites kept per caller."""
        return self._int("MAPTRACER_CALL_SITE_LIMIT", 100)

    @property
    def mapping_site_limit(self) -> int:
        return self._int("MAPTRACER_MAPPING_SITE_LIMIT", 50)

    @property
    def implementation_limit(self) -> int:
        return self._int("MAPTRACER_IMPLEMENTATION_LIMIT", 50)

    @property
    def prefer_native_hierarchy(self) -> bool:
        """Prefer the call-graph caller search over generic reference search."""
        return self._bool("MAPTRACER_PREFER_NATIVE", True)

    @property
    def entry_patterns(self) -> tuple:
        """Extra entry-point owner substrings (MAPTRACER_ENTRY_PATTERNS, comma separated)."""
        raw = os.getenv("MAPTRACER_ENTRY_PATTERNS", "")
        return tuple(p.strip() for p in raw.split(",") if p.strip())

    @property
    def log_level(self) -> str:
        return os.getenv("MAPTRACER_LOG_LEVEL", "WARNING").upper()

    def analysis_settings(self, max_depth: Optional[int] = None) -> AnalysisSettings:
        """Build immutable settings for one analysis.

        Args:
            max_depth: Override for the configured depth (CLI option)

        Returns:
            AnalysisSettings instance
        """
        return AnalysisSettings(
            max_depth=max_depth if max_depth is not None else self.max_depth,
            caller_limit=self.caller_limit,
            call_site_limit=self.call_site_limit,
            mapping_site_limit=self.mapping_site_limit,
            implementation_limit=self.implementation_limit,
            prefer_native_hierarchy=self.prefer_native_hierarchy,
            extra_entry_patterns=self.entry_patterns,
        )


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config
