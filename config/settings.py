"""
Configuration loader for the Nukhba tutor service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class LLMConfig:
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 1000
    api_key: str = ""
    timeout_seconds: float = 30.0


@dataclass
class ProxyConfig:
    """The thin `/api/chat` route. The credential is read from the environment per request."""
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 500
    api_key_env: str = "OPENAI_API_KEY"
    system_prompt: str = (
        "You are Nukhba, a helpful Arabic language tutor. "
        "Correct grammar and keep responses concise."
    )


@dataclass
class SessionConfig:
    daily_limit: int = 10
    default_language: str = "english"
    auto_play: bool = True
    volume: int = 70


@dataclass
class RetryConfig:
    max_attempts: int = 1               # 1 = no retry; capped at 3
    backoff_min: float = 0.5            # seconds
    backoff_max: float = 4.0

    def __post_init__(self):
        self.max_attempts = max(1, min(int(self.max_attempts), 3))


@dataclass
class VoiceConfig:
    rate: float = 0.9                   # slightly slower for clarity
    pitch: float = 1.0
    request_retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class Settings:
    app_name: str = "Nukhba AI Tutor"
    debug: bool = False
    llm: LLMConfig = field(default_factory=LLMConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NUKHBA_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "llm" in raw:
            llm = raw["llm"]
            settings.llm = LLMConfig(
                base_url=llm.get("base_url", settings.llm.base_url),
                model=llm.get("model", settings.llm.model),
                temperature=llm.get("temperature", settings.llm.temperature),
                max_tokens=llm.get("max_tokens", settings.llm.max_tokens),
                api_key=llm.get("api_key", ""),
                timeout_seconds=llm.get("timeout_seconds", settings.llm.timeout_seconds),
            )

        if "proxy" in raw:
            px = raw["proxy"]
            settings.proxy = ProxyConfig(
                model=px.get("model", settings.proxy.model),
                temperature=px.get("temperature", settings.proxy.temperature),
                max_tokens=px.get("max_tokens", settings.proxy.max_tokens),
                api_key_env=px.get("api_key_env", settings.proxy.api_key_env),
                system_prompt=px.get("system_prompt", settings.proxy.system_prompt),
            )

        if "session" in raw:
            s = raw["session"]
            settings.session = SessionConfig(
                daily_limit=s.get("daily_limit", 10),
                default_language=s.get("default_language", "english"),
                auto_play=s.get("auto_play", True),
                volume=s.get("volume", 70),
            )

        if "voice" in raw:
            v = raw["voice"]
            r = v.get("request_retry", {})
            settings.voice = VoiceConfig(
                rate=v.get("rate", 0.9),
                pitch=v.get("pitch", 1.0),
                request_retry=RetryConfig(
                    max_attempts=int(r.get("max_attempts", 1)),
                    backoff_min=r.get("backoff_min", 0.5),
                    backoff_max=r.get("backoff_max", 4.0),
                ),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
