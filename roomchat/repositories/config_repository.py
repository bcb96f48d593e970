from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from roomchat.constants import AI_CONFIG_FILE, AI_PROVIDERS, CONFIG_FILE

logger = logging.getLogger(__name__)


class ConfigRepository:
    def __init__(
        self, config_file: str = CONFIG_FILE, ai_config_file: str = AI_CONFIG_FILE
    ):
        self.config_file = config_file
        self.ai_config_file = ai_config_file

    def load_config(self) -> dict[str, Any]:
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        return data
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning(
                    "Failed to load config from %s: %s", self.config_file, exc
                )
        return {}

    def save_config(self, payload: dict[str, Any]) -> None:
        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(payload, f)
        except OSError as exc:
            logger.warning("Failed saving config to %s: %s", self.config_file, exc)

    def update_config(self, **fields: Any) -> dict[str, Any]:
        data = self.load_config()
        for key, value in fields.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self.save_config(data)
        return data

    def get_default_ai_config(self) -> dict[str, Any]:
        return {
            "default_provider": "gemini",
            "providers": {
                "gemini": {"api_key": "", "model": "gemini-2.5-flash"},
                "openai": {"api_key": "", "model": "gpt-4o-mini"},
            },
        }

    def load_ai_config(self) -> dict[str, Any]:
        merged = self.get_default_ai_config()
        path = Path(self.ai_config_file)
        if not path.exists():
            return merged
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to load AI config from %s: %s", self.ai_config_file, exc
            )
            return merged

        if not isinstance(loaded, dict):
            return merged
        providers = loaded.get("providers", {})
        if not isinstance(providers, dict):
            providers = {}
        for provider_name in AI_PROVIDERS:
            existing = providers.get(provider_name, {})
            if isinstance(existing, dict):
                merged["providers"][provider_name].update(existing)
        default_provider = str(loaded.get("default_provider", "")).strip().lower()
        if default_provider in merged["providers"]:
            merged["default_provider"] = default_provider
        return merged

    def save_ai_config(self, payload: dict[str, Any]) -> None:
        try:
            parent = os.path.dirname(self.ai_config_file)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.ai_config_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as exc:
            logger.warning("Failed saving AI config: %s", exc)
