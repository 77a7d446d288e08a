"""Configuration management for the translator."""

import os
from typing import Any

import httpx
import yaml
from dotenv import load_dotenv

from .languages import Language

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3"

DEFAULT_PROMPT_TEMPLATE = """\
You are a professional translation assistant. \
Translate the following text from {source_language} to {target_language}.

Requirements:
1. Keep the tone and style of the original
2. Make the translation accurate and fluent
3. Translate technical terms precisely
4. Return only the translation, without explanations

Text to translate:
{text}
"""

PROMPT_PLACEHOLDERS = ("{source_language}", "{target_language}", "{text}")

ENV_BASE_URL = "OLLAMA_URL"
ENV_MODEL = "TRANSLATOR_MODEL"


def resolve_base_url(raw: str | None) -> str:
    """Resolve the configured server address.

    Absent, blank, unparsable, non-HTTP or host-less values fall back to
    DEFAULT_BASE_URL. Never raises.

    Args:
        raw: The stored configuration string.

    Returns:
        The usable absolute base URL.
    """
    if not isinstance(raw, str):
        return DEFAULT_BASE_URL
    candidate = raw.strip()
    if not candidate:
        return DEFAULT_BASE_URL
    try:
        url = httpx.URL(candidate)
    except (httpx.InvalidURL, TypeError, ValueError):
        return DEFAULT_BASE_URL
    if url.scheme not in ("http", "https") or not url.host:
        return DEFAULT_BASE_URL
    return candidate


def render_prompt(
    template: str,
    source: Language | str,
    target: Language | str,
    text: str,
) -> str:
    """Substitute the placeholder tokens of a prompt template."""
    source_name = source.display_name if isinstance(source, Language) else source
    target_name = target.display_name if isinstance(target, Language) else target
    return (
        template
        .replace("{source_language}", source_name)
        .replace("{target_language}", target_name)
        .replace("{text}", text)
    )


class Configuration:
    """Manages configuration and environment variables for the translator."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()
        self._config = self._load_yaml_config(config_path)
        self._apply_env_overrides()

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dict, skipping files and env."""
        if not isinstance(config, dict):
            raise ValueError(f"Config must be a dict, got {type(config)}")
        instance = cls.__new__(cls)
        instance._config = config
        return instance

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str | None) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
        with open(config_path, encoding="utf-8") as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def _apply_env_overrides(self) -> None:
        ollama = self._config.setdefault("ollama", {})
        if base_url := os.getenv(ENV_BASE_URL):
            ollama["base_url"] = base_url
        if model := os.getenv(ENV_MODEL):
            ollama["model"] = model

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def get_ollama_config(self) -> dict[str, Any]:
        """Get the Ollama server section."""
        return self._config.get("ollama", {}) or {}

    def get_translation_config(self) -> dict[str, Any]:
        """Get the translation section."""
        return self._config.get("translation", {}) or {}

    @property
    def base_url(self) -> str:
        """Server base address, falling back to the default when unusable."""
        return resolve_base_url(self.get_ollama_config().get("base_url"))

    @property
    def selected_model(self) -> str:
        """Model used for translations."""
        model = self.get_ollama_config().get("model")
        if isinstance(model, str) and model.strip():
            return model.strip()
        return DEFAULT_MODEL

    @property
    def prompt_template(self) -> str:
        """Prompt template with the placeholder tokens."""
        template = self.get_translation_config().get("prompt_template")
        if isinstance(template, str) and template.strip():
            return template
        return DEFAULT_PROMPT_TEMPLATE

    def set_prompt_template(self, template: str) -> None:
        """Replace the prompt template in memory."""
        self._config.setdefault("translation", {})["prompt_template"] = template

    def reset_prompt_template(self) -> None:
        """Restore the built-in prompt template."""
        self.set_prompt_template(DEFAULT_PROMPT_TEMPLATE)

    def build_prompt(
        self, source: Language | str, target: Language | str, text: str
    ) -> str:
        """Render the configured prompt template for one translation."""
        return render_prompt(self.prompt_template, source, target, text)

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client configuration for the Ollama server.

        Returns:
            HTTP client configuration dictionary with validated values.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self.get_ollama_config().get("http_client", {}) or {}

        required_keys = [
            "max_connections", "max_keepalive", "keepalive_expiry",
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout",
        ]

        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured "
                    "under ollama in config.yaml"
                )

        max_conn = http_config["max_connections"]
        max_keepalive = http_config["max_keepalive"]

        if max_conn < 1:
            raise ValueError("http_client.max_connections must be at least 1")
        if max_keepalive > max_conn:
            raise ValueError("http_client.max_keepalive must be <= max_connections")
        for key in required_keys[2:]:
            if http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        return http_config

    def get_streaming_config(self) -> dict[str, Any]:
        """Get stream decoding and throttling configuration.

        Returns:
            Streaming configuration dictionary with validated values.

        Raises:
            ValueError: If a parameter is missing or invalid.
        """
        streaming = self.get_translation_config().get("streaming", {}) or {}

        for key in ("flush_interval", "max_line_bytes"):
            if key not in streaming:
                raise ValueError(
                    f"{key} must be explicitly configured in config.yaml "
                    "under translation.streaming"
                )

        flush_interval = streaming["flush_interval"]
        max_line_bytes = streaming["max_line_bytes"]

        if not isinstance(flush_interval, int | float) or flush_interval < 0:
            raise ValueError("flush_interval must be a non-negative number")
        if not isinstance(max_line_bytes, int) or max_line_bytes < 1:
            raise ValueError("max_line_bytes must be a positive integer")

        return {
            "flush_interval": float(flush_interval),
            "max_line_bytes": max_line_bytes,
        }

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {}) or {}
