"""
API request and response models for TaskTrack REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
todo/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: camelCase JSON (accessToken, currentPassword, ...) to match the
browser and mobile clients. The alias generator produces the camelCase names;
populate_by_name lets Python callers and tests use snake_case too.

Password length: only the upper bound is enforced here (422). The minimum is a
configurable policy (Settings.password_min_length) checked in the route so a
short password yields 400 weak_password rather than a generic validation error.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import ApiToken
from todo.models import Project, ProjectShare, Section, Task

PASSWORD_MAX_LEN = 128


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ScopeEnum(str, Enum):
    read = "read"
    write = "write"


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class CredentialsRequest(_CamelModel):
    """Request body for POST /users/register and POST /users/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=PASSWORD_MAX_LEN)


class RefreshRequest(_CamelModel):
    """Optional body for POST /users/refresh-token. The refresh cookie takes precedence."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


class LogoutRequest(_CamelModel):
    """Optional body for POST /users/logout, for clients that hold the refresh token themselves."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(max_length=PASSWORD_MAX_LEN)


class ApiTokenCreate(_CamelModel):
    """Request body for POST /users/{id}/tokens."""

    name: str = Field(min_length=1, max_length=100)
    scopes: list[ScopeEnum] = Field(default_factory=lambda: [ScopeEnum.read], min_length=1, max_length=2)
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650)


# ---------------------------------------------------------------------------
# Auth response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelResponse):
    id: int
    username: str
    created_at: str


class SessionResponse(_CamelResponse):
    """Returned by register and login. The same tokens are also set as cookies."""

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(_CamelResponse):
    access_token: str
    token_type: str = "bearer"


class SuccessResponse(_CamelResponse):
    success: bool = True
    message: Optional[str] = None


class MeResponse(_CamelResponse):
    id: int
    username: str
    auth_method: str
    scopes: list[str]


class CsrfTokenResponse(_CamelResponse):
    csrf_token: str


class ApiTokenResponse(_CamelResponse):
    """An API token as listed. The raw value is never included."""

    id: int
    name: str
    token_prefix: str
    scopes: list[str]
    expires_at: Optional[str]
    last_used_at: Optional[str]
    created_at: str

    @classmethod
    def from_domain(cls, token: ApiToken) -> "ApiTokenResponse":
        return cls(
            id=token.id,
            name=token.name,
            token_prefix=token.token_prefix,
            scopes=list(token.scopes),
            expires_at=token.expires_at,
            last_used_at=token.last_used_at,
            created_at=token.created_at or "",
        )


class ApiTokenCreatedResponse(ApiTokenResponse):
    """Returned once, at issuance. token is the only copy of the raw value."""

    token: str


# ---------------------------------------------------------------------------
# Project / section / task models
# ---------------------------------------------------------------------------


class ProjectCreate(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class ProjectUpdate(ProjectCreate):
    pass


class ShareCreate(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)


class SectionCreate(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    project_id: int
    name: str = Field(min_length=1, max_length=255)


class TaskCreate(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    section_id: int
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=10000)


class TaskUpdate(_CamelModel):
    """Partial update; omitted fields are left unchanged."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=10000)
    completed: Optional[bool] = None
    archived: Optional[bool] = None


class ProjectResponse(_CamelResponse):
    id: int
    user_id: int
    name: str
    order_index: int
    created_at: str
    is_owner: bool
    task_count: int = 0

    @classmethod
    def from_domain(cls, project: Project, is_owner: bool, task_count: int = 0) -> "ProjectResponse":
        return cls(
            id=project.id,
            user_id=project.user_id,
            name=project.name,
            order_index=project.order_index,
            created_at=project.created_at,
            is_owner=is_owner,
            task_count=task_count,
        )


class ShareResponse(_CamelResponse):
    user_id: int
    username: Optional[str]
    shared_by_user_id: int
    created_at: str

    @classmethod
    def from_domain(cls, share: ProjectShare, username: Optional[str]) -> "ShareResponse":
        return cls(
            user_id=share.user_id,
            username=username,
            shared_by_user_id=share.shared_by_user_id,
            created_at=share.created_at,
        )


class SectionResponse(_CamelResponse):
    id: int
    project_id: int
    name: str
    order_index: int
    archived: bool
    created_at: str

    @classmethod
    def from_domain(cls, section: Section) -> "SectionResponse":
        return cls(
            id=section.id,
            project_id=section.project_id,
            name=section.name,
            order_index=section.order_index,
            archived=section.archived,
            created_at=section.created_at,
        )


class TaskResponse(_CamelResponse):
    id: int
    section_id: int
    title: str
    description: Optional[str]
    completed: bool
    archived: bool
    order_index: int
    created_at: str

    @classmethod
    def from_domain(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            section_id=task.section_id,
            title=task.title,
            description=task.description,
            completed=task.completed,
            archived=task.archived,
            order_index=task.order_index,
            created_at=task.created_at,
        )


# ---------------------------------------------------------------------------
# Envelope / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error payload included in every non-2xx response."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope: {"error": {"code": ..., "message": ...}}."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
