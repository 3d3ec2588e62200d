"""
Configuration loader for the chatroute engine.
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
class ProcessorConfig:
    lock_timeout_ms: int = 300          # a lock older than this is abandoned
    lock_retries: int = 4               # create-or-lock attempts per turn
    lock_retry_delay_ms: Optional[int] = None   # default: lock_timeout_ms + 10
    dedup_window: int = 10              # processed timestamps kept per sender
    load_users: bool = False
    default_state: dict[str, Any] = field(default_factory=dict)
    app_url: str = ""

    @property
    def retry_delay_s(self) -> float:
        delay = self.lock_retry_delay_ms
        if delay is None:
            delay = self.lock_timeout_ms + 10
        return delay / 1000


@dataclass
class SenderConfig:
    url: str = "https://graph.facebook.com/v2.8/me/messages"
    page_token: str = ""
    timeout_s: float = 10.0
    auto_typing: bool = False
    profile_url: str = "https://graph.facebook.com/v2.8"


@dataclass
class StorageConfig:
    backend: str = "memory"             # "memory" | "file"
    file_dir: str = "./data"


@dataclass
class AiConfig:
    confidence: float = 0.94            # default threshold of Ai.match()
    threshold: float = 0.6              # scores below are never reported


@dataclass
class BotSettings:
    app_name: str = "chatroute"
    debug: bool = False
    processor: ProcessorConfig = field(default_factory=ProcessorConfig)
    sender: SenderConfig = field(default_factory=SenderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    ai: AiConfig = field(default_factory=AiConfig)


_settings: Optional[BotSettings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
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


def load_settings(config_path: str = None) -> BotSettings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "CHATROUTE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = BotSettings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "processor" in raw:
            p = raw["processor"]
            settings.processor = ProcessorConfig(
                lock_timeout_ms=int(p.get("lock_timeout_ms", 300)),
                lock_retries=int(p.get("lock_retries", 4)),
                lock_retry_delay_ms=p.get("lock_retry_delay_ms"),
                dedup_window=int(p.get("dedup_window", 10)),
                load_users=bool(p.get("load_users", False)),
                default_state=p.get("default_state") or {},
                app_url=p.get("app_url", ""),
            )

        if "sender" in raw:
            s = raw["sender"]
            settings.sender = SenderConfig(
                url=s.get("url", settings.sender.url),
                page_token=s.get("page_token", ""),
                timeout_s=float(s.get("timeout_s", 10.0)),
                auto_typing=bool(s.get("auto_typing", False)),
                profile_url=s.get("profile_url", settings.sender.profile_url),
            )

        if "storage" in raw:
            st = raw["storage"]
            settings.storage = StorageConfig(
                backend=st.get("backend", "memory"),
                file_dir=st.get("file_dir", "./data"),
            )

        if "ai" in raw:
            a = raw["ai"]
            settings.ai = AiConfig(
                confidence=float(a.get("confidence", 0.94)),
                threshold=float(a.get("threshold", 0.6)),
            )

    _settings = settings
    return settings


def get_settings() -> BotSettings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
