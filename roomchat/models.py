from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from roomchat.constants import DEFAULT_THEME, THEME_COLORS, THEME_MODES

OutputMode = Literal["public", "private"]
ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthorInfo(BaseModel):
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    content: str = ""
    is_ai_message: bool = False
    ai_output_mode: OutputMode | None = None
    ai_prompt: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None
    profiles: AuthorInfo | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @property
    def author_name(self) -> str:
        profile = self.profiles
        if profile is None:
            return "Anonymous"
        return profile.display_name or profile.username or "Anonymous"

    def is_visible_to(self, viewer_id: str | None) -> bool:
        if self.is_ai_message and self.ai_output_mode == "private":
            return viewer_id is not None and self.user_id == viewer_id
        return True

    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"profiles"}, exclude_none=True)

    @classmethod
    def from_row(cls, data: dict[str, Any]) -> "Message":
        return cls(**data)


class Profile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    theme_preference: Any = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_author_info(self) -> AuthorInfo:
        return AuthorInfo(
            username=self.username,
            display_name=self.display_name,
            avatar_url=self.avatar_url,
        )

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class TypingIndicator(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    username: str
    updated_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("updated_at", "created_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class AIInteraction(BaseModel):
    id: str
    prompt: str
    output: str
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "AIInteraction":
        return cls(
            id=message.id,
            prompt=message.ai_prompt or "",
            output=message.content,
            created_at=message.created_at,
        )


class ThemePreference(BaseModel):
    mode: str = DEFAULT_THEME["mode"]
    color: str = DEFAULT_THEME["color"]

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in THEME_MODES:
            raise ValueError(f"Unknown theme mode '{value}'")
        return value

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        if value not in THEME_COLORS:
            raise ValueError(f"Unknown theme color '{value}'")
        return value

    @classmethod
    def parse(cls, raw: Any) -> "ThemePreference | None":
        """Accept a dict, a JSON-ish dict string, or a legacy bare mode string."""
        if isinstance(raw, ThemePreference):
            return raw
        if isinstance(raw, str):
            value = raw.strip()
            if value in THEME_MODES:
                return cls(mode=value)
            try:
                return cls.model_validate_json(value)
            except ValidationError:
                return None
        if isinstance(raw, dict):
            try:
                return cls.model_validate(raw)
            except ValidationError:
                return None
        return None


class AuthUser(BaseModel):
    id: str
    email: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def username(self) -> str:
        configured = str(self.metadata.get("username", "")).strip()
        if configured:
            return configured
        local_part = self.email.split("@", 1)[0].strip()
        return local_part or "User"


class ChangeEvent(BaseModel):
    table: str
    event_type: ChangeType
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)

    @property
    def row_id(self) -> str:
        source = self.old if self.event_type == "DELETE" else self.new
        return str(source.get("id") or source.get("user_id") or "")


class AIProviderConfig(BaseModel):
    provider: str
    api_key: str
    model: str


class AIReplyRequest(BaseModel):
    message: str
    outputMode: OutputMode = "private"


class AIReplyResponse(BaseModel):
    success: bool
    message: Message | None = None
    error: str | None = None


class SummaryRequest(BaseModel):
    messages: list[Message] = Field(default_factory=list)


class SummaryResponse(BaseModel):
    success: bool
    summary: str | None = None
    error: str | None = None

