from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

CACHE_DIR_NAME = "safari-tabgroups"

_SAFARI_CONTAINERS = {
    "safari": "Library/Containers/com.apple.Safari/Data/Library/Safari",
    "stp": "Library/Containers/com.apple.SafariTechnologyPreview/Data/Library/SafariTechnologyPreview",
}

DEFAULT_CATEGORIES = [
    "research",
    "shopping",
    "travel",
    "work",
    "learning",
    "entertainment",
    "news",
    "reference",
    "project",
    "other",
]

DEFAULT_DESCRIBE_PROMPT = """You classify a browser tab group for one user.

You get the group name, its tabs (title and URL) and sometimes excerpts of page content.

Return strict JSON only (no prose, no code fences) with these keys:
- description: one or two sentences on what the group is about.
- category: exactly one of {{categories}}.
- topics: 1-6 short lowercase topic strings.
- intent: what the user is most likely trying to do with these tabs.
- confidence: number between 0 and 1.
"""

DEFAULT_FETCH_PROMPT = "You are a concise assistant. Answer using only the provided page content."


class ConfigError(RuntimeError):
    """Raised when a required setting (usually an API key) is missing or invalid."""


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_list(name: str, default: List[str]) -> List[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return list(default)
    return [x.strip() for x in v.split(",") if x.strip()]


@dataclass
class Settings:
    # Cache ("" => XDG cache dir)
    cache_dir: str = ""

    # Safari source
    safari_variant: str = "safari"  # safari | stp
    safari_db: str = ""  # explicit source path, wins over safari_variant

    # Raindrop.io
    raindrop_api_key: str = "$RAINDROP_TOKEN"
    raindrop_base_url: str = "https://api.raindrop.io/rest/v1"
    raindrop_timeout_s: int = 30

    # OpenRouter (OpenAI-compatible chat completions)
    openrouter_api_key: str = "$OPENROUTER_API_KEY"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-2.5-flash"
    openrouter_max_tokens: int = 0  # 0 => let the provider decide
    openrouter_timeout_s: int = 120
    openrouter_system_prompt: str = DEFAULT_FETCH_PROMPT
    openrouter_max_content_bytes: int = 60_000

    # describe
    describe_categories: List[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    describe_system_prompt: str = DEFAULT_DESCRIBE_PROMPT
    describe_max_tabs_to_fetch: int = 5
    describe_skip_domains: List[str] = field(default_factory=lambda: ["localhost", "127.0.0.1"])
    describe_per_tab_max_bytes: int = 4_000

    # Page fetching
    fetch_timeout_s: int = 15
    fetch_user_agent: str = "tabgroups/0.3 (+https://example.invalid)"
    fetch_max_bytes: int = 2_000_000

    # Logging / UX
    log_level: str = "WARNING"
    no_color: bool = False

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.cache_dir = _env_str("TABGROUPS_CACHE_DIR", s.cache_dir)

        s.safari_variant = _env_str("TABGROUPS_SAFARI_VARIANT", s.safari_variant)
        s.safari_db = _env_str("TABGROUPS_SAFARI_DB", s.safari_db)

        s.raindrop_api_key = _env_str("TABGROUPS_RAINDROP_API_KEY", s.raindrop_api_key)
        s.raindrop_base_url = _env_str("TABGROUPS_RAINDROP_BASE_URL", s.raindrop_base_url)
        s.raindrop_timeout_s = _env_int("TABGROUPS_RAINDROP_TIMEOUT_S", s.raindrop_timeout_s)

        s.openrouter_api_key = _env_str("TABGROUPS_OPENROUTER_API_KEY", s.openrouter_api_key)
        s.openrouter_base_url = _env_str("TABGROUPS_OPENROUTER_BASE_URL", s.openrouter_base_url)
        s.openrouter_model = _env_str("TABGROUPS_OPENROUTER_MODEL", s.openrouter_model)
        s.openrouter_max_tokens = _env_int("TABGROUPS_OPENROUTER_MAX_TOKENS", s.openrouter_max_tokens)
        s.openrouter_timeout_s = _env_int("TABGROUPS_OPENROUTER_TIMEOUT_S", s.openrouter_timeout_s)
        s.openrouter_max_content_bytes = _env_int(
            "TABGROUPS_OPENROUTER_MAX_CONTENT_BYTES", s.openrouter_max_content_bytes
        )

        s.describe_categories = _env_list("TABGROUPS_DESCRIBE_CATEGORIES", s.describe_categories)
        s.describe_max_tabs_to_fetch = _env_int("TABGROUPS_DESCRIBE_MAX_TABS_TO_FETCH", s.describe_max_tabs_to_fetch)
        s.describe_skip_domains = _env_list("TABGROUPS_DESCRIBE_SKIP_DOMAINS", s.describe_skip_domains)
        s.describe_per_tab_max_bytes = _env_int("TABGROUPS_DESCRIBE_PER_TAB_MAX_BYTES", s.describe_per_tab_max_bytes)

        s.fetch_timeout_s = _env_int("TABGROUPS_FETCH_TIMEOUT_S", s.fetch_timeout_s)
        s.fetch_user_agent = _env_str("TABGROUPS_FETCH_UA", s.fetch_user_agent)
        s.fetch_max_bytes = _env_int("TABGROUPS_FETCH_MAX_BYTES", s.fetch_max_bytes)

        s.log_level = _env_str("TABGROUPS_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("TABGROUPS_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()


def default_cache_dir() -> Path:
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / CACHE_DIR_NAME


def resolve_cache_dir(settings: Settings) -> Path:
    if settings.cache_dir:
        return Path(settings.cache_dir).expanduser()
    return default_cache_dir()


def safari_source_path(settings: Settings, home: Optional[Path] = None) -> Path:
    if settings.safari_db:
        return Path(settings.safari_db).expanduser()
    variant = (settings.safari_variant or "safari").strip().lower()
    container = _SAFARI_CONTAINERS.get(variant)
    if container is None:
        raise ConfigError(f"Unknown safari_variant {settings.safari_variant!r} (expected: safari, stp)")
    return (home or Path.home()) / container / "SafariTabs.db"


def resolve_api_key(value: str) -> str:
    """`$NAME` reads environment variable NAME; anything else is the key itself."""
    v = (value or "").strip()
    if v.startswith("$"):
        return os.getenv(v[1:], "").strip()
    return v


def require_api_key(value: str, *, service: str, hint: str) -> str:
    key = resolve_api_key(value)
    if not key:
        raise ConfigError(f"{service} API key not set. {hint}")
    return key
