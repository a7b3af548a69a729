from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from modvault.schemas import Role

MAX_FILE_BYTES = 100 * 1024 * 1024
# .exe is accepted for parity with the deployed allow-list; see DESIGN.md.
DEFAULT_ALLOWED_EXTENSIONS = [".zip", ".pdf", ".png", ".jpg", ".jpeg", ".txt", ".exe"]


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    upload_dir: str = "data/uploads"
    staging_dir: str = "data/staging"
    catalog_file: str = "data/items.json"

    @field_validator("upload_dir", "staging_dir", "catalog_file")
    @classmethod
    def validate_paths(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("storage paths must not be empty")
        return normalized

    @model_validator(mode="after")
    def validate_distinct_dirs(self) -> StorageConfig:
        if Path(self.upload_dir).resolve() == Path(self.staging_dir).resolve():
            raise ValueError("storage.staging_dir must differ from storage.upload_dir")
        return self


class LimitsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_file_bytes: int = Field(default=MAX_FILE_BYTES, ge=1)
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )
    min_upload_bytes_per_second: int = Field(default=256 * 1024, ge=1)
    upload_grace_seconds: float = Field(default=30.0, ge=0.0)
    chunk_size: int = Field(default=64 * 1024, ge=1)

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for raw in value:
            ext = raw.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        if not normalized:
            raise ValueError("limits.allowed_extensions must not be empty")
        return normalized

    @property
    def upload_deadline_seconds(self) -> float:
        return self.max_file_bytes / self.min_upload_bytes_per_second + self.upload_grace_seconds


class UserConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
    password_hash: str
    role: Role

    @field_validator("username", "password_hash")
    @classmethod
    def validate_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("users[].username and users[].password_hash must not be empty")
        return normalized


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    users: list[UserConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_users(self) -> AppConfig:
        seen: set[str] = set()
        for user in self.users:
            if user.username in seen:
                raise ValueError(f"duplicate username in users: {user.username}")
            seen.add(user.username)
        return self


def load_config(path: str | Path) -> AppConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = _parse_yaml(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed


def _parse_yaml(raw: str) -> dict[str, Any]:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ValueError(f"Configuration is neither valid JSON nor YAML: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
