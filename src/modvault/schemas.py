from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CATEGORY = "mods"


def now_utc() -> datetime:
    return datetime.now(tz=UTC)


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Role(StrEnum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    EDITOR = "editor"


class Principal(DTOBase):
    """An authenticated identity with exactly one role, or anonymous."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str | None = None
    role: Role | None = None

    @model_validator(mode="after")
    def validate_identity_and_role(self) -> Principal:
        if (self.username is None) != (self.role is None):
            raise ValueError("principal needs both username and role, or neither")
        return self

    @classmethod
    def anonymous(cls) -> Principal:
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.username is not None and self.role is not None

    def label(self) -> str:
        if not self.is_authenticated:
            return "anonymous"
        return f"{self.username}({self.role})"


class ItemMetadata(DTOBase):
    """Client-supplied descriptive fields for a new item."""

    title: str | None = None
    description: str = ""
    category: str = DEFAULT_CATEGORY
    is_public: bool = False

    @field_validator("title", mode="before")
    @classmethod
    def blank_title_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("category", mode="before")
    @classmethod
    def blank_category_to_default(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_CATEGORY
        return value

    @field_validator("description", mode="before")
    @classmethod
    def none_description_to_empty(cls, value: object) -> object:
        return "" if value is None else value


class ItemRecord(DTOBase):
    id: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    storage_name: str
    original_name: str
    size_bytes: int = Field(ge=0)
    uploaded_at: datetime = Field(default_factory=now_utc)
    is_public: bool = False
    uploader: str

    @field_validator("uploaded_at", mode="after")
    @classmethod
    def validate_datetime_fields(cls, value: datetime) -> datetime:
        return _normalize_datetime(value)

    @field_validator("storage_name")
    @classmethod
    def validate_storage_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in {".", ".."}:
            raise ValueError(f"storage_name is not a flat file name: {value!r}")
        return value


class PublicItemView(DTOBase):
    id: str
    title: str
    description: str
    category: str
    storage_name: str
    size_bytes: int

