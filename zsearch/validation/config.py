"""
zsearch Configuration - Configuration loading and validation.

This module provides the Config class that merges configuration from, in
increasing precedence:

- built-in defaults
- system: /etc/zsearch/config.yaml
- user: $XDG_CONFIG_HOME/zsearch/config.yaml (default ~/.config/zsearch)
- project: .zsearch.yaml (nearest one walking up from the cwd)
- environment variables (Z_AI_API_KEY, Z_AI_TIMEOUT, ZAI_MCP_* ...)
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from zsearch.bridge.endpoints import DEFAULT_MCP_BASE_URL
from zsearch.bridge.schema import SESSION_TTL_MS

DEFAULT_API_BASE_URL = "https://api.z.ai/api/coding/paas/v4"
SYSTEM_CONFIG_PATH = Path("/etc/zsearch/config.yaml")
PROJECT_CONFIG_NAME = ".zsearch.yaml"
MIN_API_KEY_LENGTH = 10


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


def default_cache_dir(environ: Optional[Mapping[str, str]] = None) -> str:
    """$XDG_CACHE_HOME/zsearch, falling back to ~/.cache/zsearch."""
    environ = os.environ if environ is None else environ
    xdg_cache = environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return str(Path(xdg_cache) / "zsearch")
    return str(Path.home() / ".cache" / "zsearch")


def user_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    xdg_config = environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config) if xdg_config else Path.home() / ".config"
    return base / "zsearch" / "config.yaml"


class CacheConfig(BaseModel):
    """Tool-discovery cache settings."""

    enabled: bool = True
    ttl_ms: int = 86_400_000  # 24 hours
    dir: str = Field(default_factory=default_cache_dir)


class RetryConfig(BaseModel):
    """Retry counts; 0 disables retrying."""

    vision: int = 2
    global_count: int = 0


class SessionsConfig(BaseModel):
    """MCP session cache settings."""

    ttl_ms: int = SESSION_TTL_MS
    file: Optional[str] = None


class EndpointsConfig(BaseModel):
    """Remote MCP endpoint root."""

    base_url: str = DEFAULT_MCP_BASE_URL


class ZSearchConfig(BaseModel):
    """Complete zsearch configuration schema."""

    api_key: Optional[str] = None
    mode: str = "ZAI"
    timeout: float = 30.0  # seconds
    transport: Literal["session", "curl"] = "session"
    api_base_url: str = DEFAULT_API_BASE_URL
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)

    @property
    def session_file(self) -> Path:
        if self.sessions.file:
            return Path(self.sessions.file).expanduser()
        return Path(self.cache.dir).expanduser() / "mcp-sessions.json"


def _positive_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _non_negative_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Translate environment variables into a config layer."""
    layer: Dict[str, Any] = {}

    if environ.get("Z_AI_API_KEY"):
        layer["api_key"] = environ["Z_AI_API_KEY"]
    if environ.get("Z_AI_MODE"):
        layer["mode"] = environ["Z_AI_MODE"]
    if environ.get("Z_AI_BASE_URL"):
        layer["api_base_url"] = environ["Z_AI_BASE_URL"]

    timeout_ms = _positive_int(environ.get("Z_AI_TIMEOUT"))
    if timeout_ms is not None:
        layer["timeout"] = timeout_ms / 1000

    transport = environ.get("ZAI_MCP_TRANSPORT")
    if transport in ("session", "curl"):
        layer["transport"] = transport

    cache: Dict[str, Any] = {}
    if "ZAI_MCP_TOOL_CACHE" in environ:
        cache["enabled"] = environ["ZAI_MCP_TOOL_CACHE"] != "0"
    ttl = _positive_int(environ.get("ZAI_MCP_TOOL_CACHE_TTL_MS"))
    if ttl is not None:
        cache["ttl_ms"] = ttl
    if environ.get("ZAI_MCP_CACHE_DIR"):
        cache["dir"] = environ["ZAI_MCP_CACHE_DIR"]
    if cache:
        layer["cache"] = cache

    retry: Dict[str, Any] = {}
    vision = _non_negative_int(environ.get("ZAI_MCP_VISION_RETRY_COUNT"))
    if vision is not None:
        retry["vision"] = vision
    global_count = _non_negative_int(environ.get("ZAI_MCP_RETRY_COUNT"))
    if global_count is not None:
        retry["global_count"] = global_count
    if retry:
        layer["retry"] = retry

    return layer


class Config:
    """
    zsearch configuration manager.

    Example:
        >>> config = Config.load()
        >>> config.merged.timeout
        30.0
        >>> config.validate()  # None when usable, else an error message
    """

    def __init__(
        self,
        layers: Optional[List[Dict[str, Any]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize Config.

        Args:
            layers: Configuration dictionaries, lowest precedence first.
            environ: Environment mapping; its overrides win over all layers.
        """
        self._layers = [layer for layer in (layers or []) if layer]
        self._environ = dict(environ or {})
        self._merged: Optional[ZSearchConfig] = None

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        environ = os.environ if environ is None else environ
        layers = [
            cls._load_yaml(SYSTEM_CONFIG_PATH),
            cls._load_yaml(user_config_path(environ)),
            cls._load_yaml(cls._find_project_config()),
        ]
        return cls(layers=layers, environ=environ)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _find_project_config(cls) -> Optional[Path]:
        """Find the project config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / PROJECT_CONFIG_NAME
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        merged: Dict[str, Any] = {}
        for layer in self._layers + [env_overrides(self._environ)]:
            merged = self._deep_merge(merged, layer)
        return merged

    @property
    def merged(self) -> ZSearchConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = ZSearchConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def override(self, **values: Any) -> None:
        """Apply command-line overrides (highest precedence)."""
        values = {key: value for key, value in values.items() if value is not None}
        if values:
            self._layers.append(values)
            self._merged = None

    def validate(self) -> Optional[str]:
        """Return an error message when the configuration is unusable."""
        api_key = self.merged.api_key
        if not api_key:
            return (
                "Z_AI_API_KEY environment variable is required. "
                'Set it with: export Z_AI_API_KEY="your-api-key"'
            )
        if len(api_key) < MIN_API_KEY_LENGTH:
            return "Z_AI_API_KEY appears to be invalid (too short)"
        return None

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
