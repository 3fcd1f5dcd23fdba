"""Request bodies accepted by the controllers."""

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if '@' not in value or value.startswith('@') or value.endswith('@'):
        raise ValueError('not a valid email address')
    return value


class RegisterRequest(BaseModel):
    """Body of ``POST /users/register``."""

    email: str
    password: Optional[str] = None
    provider: int = Field(0, ge=0,
                          validation_alias=AliasChoices('provider', 'from'))
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices('attributes', 'info')
    )

    @field_validator('email')
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value)


class LoginRequest(BaseModel):
    """Body of ``POST /users/login``; a password or a one-time salt."""

    email: Optional[str] = None
    password: Optional[str] = None
    onetime_salt: Optional[str] = Field(
        None, validation_alias=AliasChoices('onetime_salt', 'onetimeSalt')
    )


class UpdateRequest(BaseModel):
    """Body of ``POST /users/<id>/update``. Other keys are ignored."""

    email: Optional[str] = None
    provider: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices('provider', 'from')
    )
    attributes: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices('attributes', 'info')
    )
    status: Optional[int] = Field(None, ge=0, le=1)

    @field_validator('email')
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value)


class PasswordChangeRequest(BaseModel):
    """Body of ``POST /users/<id>/password``."""

    old_password: Optional[str] = Field(
        None, validation_alias=AliasChoices('old_password', 'oldPassword')
    )
    new_password: Optional[str] = Field(
        None, validation_alias=AliasChoices('new_password', 'newPassword')
    )


class MagicLinkRequest(BaseModel):
    """Body of ``POST /auth/magic-link``."""

    email: str

    @field_validator('email')
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value)


class ProviderLoginRequest(BaseModel):
    """Body of ``POST /auth/<provider>``."""

    token: str
