"""JSON config store for the recorder and environment settings for the server."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_LANGUAGE = "en-AU"
DEFAULT_DASHSCOPE_MODEL = "qwen-plus"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "harmony_minutes" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_deepgram_api_key(self) -> str:
        return self._get("deepgram_api_key", env="DEEPGRAM_API_KEY")

    def set_deepgram_api_key(self, key: str) -> None:
        self._set("deepgram_api_key", key)

    def get_token_endpoint(self) -> str:
        return self._get("token_endpoint", env="HARMONY_TOKEN_ENDPOINT")

    def set_token_endpoint(self, url: str) -> None:
        self._set("token_endpoint", url)

    def get_dashscope_api_key(self) -> str:
        return self._get("dashscope_api_key", env="DASHSCOPE_API_KEY")

    def set_dashscope_api_key(self, key: str) -> None:
        self._set("dashscope_api_key", key)

    def get_minutes_endpoint(self) -> str:
        return self._get("minutes_endpoint", env="HARMONY_MINUTES_ENDPOINT")

    def set_minutes_endpoint(self, url: str) -> None:
        self._set("minutes_endpoint", url)

    def get_language(self) -> str:
        return self._get("language", default=DEFAULT_LANGUAGE)

    def set_language(self, language: str) -> None:
        self._set("language", language)

    def _get(self, name: str, env: str = "", default: str = "") -> str:
        value = str(self._read_all().get(name, "") or "")
        if not value and env:
            value = os.getenv(env, "")
        return value or default

    def _set(self, name: str, value: str) -> None:
        data = self._read_all()
        data[name] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


@dataclass(frozen=True)
class ServerSettings:
    deepgram_api_key: str = ""
    deepgram_project_id: str = ""
    dashscope_api_key: str = ""
    dashscope_model: str = DEFAULT_DASHSCOPE_MODEL
    json_logs: bool = True

    @classmethod
    def from_env(cls) -> "ServerSettings":
        return cls(
            deepgram_api_key=os.getenv("DEEPGRAM_API_KEY", ""),
            deepgram_project_id=os.getenv("DEEPGRAM_PROJECT_ID", ""),
            dashscope_api_key=os.getenv("DASHSCOPE_API_KEY", ""),
            dashscope_model=os.getenv("DASHSCOPE_MODEL", DEFAULT_DASHSCOPE_MODEL),
            json_logs=os.getenv("LOG_JSON", "true").lower() not in ("0", "false", "no"),
        )

    @property
    def has_deepgram(self) -> bool:
        return bool(self.deepgram_api_key and self.deepgram_project_id)
