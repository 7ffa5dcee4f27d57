"""Settings store — API key, base URL and model tier in a JSON file."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from loguru import logger
from platformdirs import user_config_dir

from gptchat.chat.cost import Model
from gptchat.llm.client import LLMConfig
from gptchat.storage.catalog import APP_NAME

SETTINGS_PATH = Path(user_config_dir(APP_NAME)) / "settings.json"

_DEFAULTS = {
    "api_key": "",
    "base_url": "https://api.openai.com/v1",
    "model": Model.GPT3.value,
}

_settings_lock = threading.Lock()


def load_settings(path: Path | None = None) -> dict:
    """加载设置，不存在则返回默认值"""
    path = path or SETTINGS_PATH
    with _settings_lock:
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    saved = json.load(f)
                if not isinstance(saved, dict):
                    raise ValueError("settings file must contain an object")
                # 补充新增的默认 key（兼容旧配置文件）
                for k, v in _DEFAULTS.items():
                    if k not in saved:
                        saved[k] = v
                return saved
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read settings from {path}, using defaults: {e}")
        return dict(_DEFAULTS)


def save_settings(settings: dict, path: Path | None = None) -> None:
    path = path or SETTINGS_PATH
    with _settings_lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings, f, ensure_ascii=False, indent=2)


def get_llm_config(path: Path | None = None) -> LLMConfig | None:
    """api_key 为空则返回 None"""
    s = load_settings(path)
    if not s.get("api_key"):
        return None
    return LLMConfig(
        api_key=s["api_key"],
        base_url=s.get("base_url") or _DEFAULTS["base_url"],
        model=Model.parse(s.get("model"), default=Model.GPT3),
    )
