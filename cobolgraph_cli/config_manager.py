"""Configuration manager for CobolGraph CLI using TOML files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict

import toml

from .config import BASE_DIR
from .errors import ConfigurationError

CONFIG_FILE = BASE_DIR / "config.toml"

ENV_PREFIX = "COBOLGRAPH_LLM_"


# Default configurations for each provider
DEFAULT_CONFIGS = {
    "openai": {
        "provider": "openai",
        "model": "gpt-4.1",
        "api_key": "",
    },
    "azure-openai": {
        "provider": "azure-openai",
        "model": "gpt-4.1",
        "api_key": "",
        "endpoint": "",
        "deployment": "gpt-4.1",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "api_key": "",
    },
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/generate",
    },
    "groq": {
        "provider": "groq",
        "model": "llama-3.3-70b-versatile",
        "api_key": "",
    },
    "gemini": {
        "provider": "gemini",
        "model": "gemini-2.0-flash",
        "api_key": "",
    },
    "openrouter": {
        "provider": "openrouter",
        "model": "google/gemini-2.0-flash-exp:free",
        "api_key": "",
        "endpoint": "https://openrouter.ai/api/v1/chat/completions",
    },
}

DEFAULT_PROVIDER = "openai"

DEFAULT_RETRY = {"max_attempts": 3, "base_delay_ms": 5000}

DEFAULT_PIPELINE = {"max_output_tokens": 32768, "cost_per_1k_tokens": 0.002}

# Danish error-handling terms that trip content filters.
DEFAULT_SANITIZE = {
    "FEJL VED KALD BDSDATO": "ERROR CALLING BDSDATO",
    "FEJL VED KALD AF": "ERROR CALLING",
    "FEJL VED KALD": "ERROR IN CALL",
    "INC-FEJLMELD": "INC-ERROR-MSG",
    "FEJLMELD-": "ERROR_MSG_",
    "FEJLMELD": "ERROR_MSG",
    "FEJL-": "ERROR_",
    "FEJL": "ERROR_CODE",
    "MEDD-TEKST": "MSG_TEXT",
    "KALD": "CALL_OP",
}


@dataclass
class LLMSettings:
    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_CONFIGS[DEFAULT_PROVIDER]["model"]
    api_key: str = ""
    endpoint: str = ""
    deployment: str = ""


@dataclass
class RetrySettings:
    max_attempts: int = DEFAULT_RETRY["max_attempts"]
    base_delay_ms: int = DEFAULT_RETRY["base_delay_ms"]


@dataclass
class PipelineSettings:
    max_output_tokens: int = DEFAULT_PIPELINE["max_output_tokens"]
    cost_per_1k_tokens: float = DEFAULT_PIPELINE["cost_per_1k_tokens"]
    sanitize: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SANITIZE))


@dataclass
class Settings:
    llm: LLMSettings = field(default_factory=LLMSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError):
        return {}


def load_config() -> Dict[str, Any]:
    """Load the ``[llm]`` section.

    Returns:
        Provider settings; falls back to the default provider's settings if
        the file doesn't exist or has no ``[llm]`` section.
    """
    full = load_full_config()
    return full.get("llm", DEFAULT_CONFIGS[DEFAULT_PROVIDER].copy())


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError:
        return False


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "", deployment: str = "") -> bool:
    """Save LLM configuration to TOML file.

    Preserves other sections (e.g. ``[retry]``) in the file.

    Returns:
        True if saved successfully, False otherwise
    """
    config = load_full_config()

    config["llm"] = {
        "provider": provider,
        "model": model,
    }
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint
    if deployment:
        config["llm"]["deployment"] = deployment

    return _save_full_config(config)


def clear_config() -> bool:
    """Remove the ``[llm]`` section, resetting to defaults."""
    config = load_full_config()
    config.pop("llm", None)
    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    """Get default configuration for a specific provider."""
    return DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS[DEFAULT_PROVIDER]).copy()


def _env_overrides() -> Dict[str, str]:
    overrides = {}
    for key in ("provider", "model", "api_key", "endpoint", "deployment"):
        value = os.environ.get(ENV_PREFIX + key.upper())
        if value:
            overrides[key] = value
    return overrides


def _number(section: Dict[str, Any], table: str, key: str, convert, minimum=0):
    value = section[key]
    try:
        if isinstance(value, bool):
            raise TypeError("booleans are not numbers")
        number = convert(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"[{table}] {key} must be a number, got {value!r}") from exc
    if number < minimum:
        raise ConfigurationError(f"[{table}] {key} must be at least {minimum}, got {value!r}")
    return number


def _sanitize_table(value: Any) -> Dict[str, str]:
    if value is None:
        return dict(DEFAULT_SANITIZE)
    if not isinstance(value, dict):
        raise ConfigurationError(f"[sanitize] must be a table of strings, got {type(value).__name__}")
    for key, replacement in value.items():
        if not isinstance(key, str) or not key or not isinstance(replacement, str):
            raise ConfigurationError(f"[sanitize] entry {key!r} = {replacement!r} must map text to text")
    return dict(value)


def load_settings() -> Settings:
    """Aggregate the TOML file, provider defaults and environment overrides.

    Raises:
        ConfigurationError: If a ``[retry]``, ``[pipeline]`` or ``[sanitize]``
            value has the wrong type.
    """
    full = load_full_config()

    llm_cfg = dict(full.get("llm", {}))
    llm_cfg.update(_env_overrides())
    provider = str(llm_cfg.get("provider", DEFAULT_PROVIDER)).lower()
    merged = get_provider_config(provider)
    merged.update(llm_cfg)
    merged["provider"] = provider

    retry_cfg = {**DEFAULT_RETRY, **full.get("retry", {})}
    pipeline_cfg = {**DEFAULT_PIPELINE, **full.get("pipeline", {})}

    return Settings(
        llm=LLMSettings(
            provider=provider,
            model=str(merged.get("model", "")),
            api_key=str(merged.get("api_key", "")),
            endpoint=str(merged.get("endpoint", "")),
            deployment=str(merged.get("deployment", "")),
        ),
        retry=RetrySettings(
            max_attempts=_number(retry_cfg, "retry", "max_attempts", int, minimum=1),
            base_delay_ms=_number(retry_cfg, "retry", "base_delay_ms", int),
        ),
        pipeline=PipelineSettings(
            max_output_tokens=_number(pipeline_cfg, "pipeline", "max_output_tokens", int, minimum=1),
            cost_per_1k_tokens=_number(pipeline_cfg, "pipeline", "cost_per_1k_tokens", float),
            sanitize=_sanitize_table(full.get("sanitize")),
        ),
    )
