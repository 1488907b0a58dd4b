"""
Admin-only request schemas: configuration, users, redirects and data operations.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

ConfigType = Literal['string', 'integer', 'number', 'boolean', 'date', 'datetime', 'json']


class GlobalConfigSet(BaseModel):
    key: str = Field(..., min_length=1, max_length=200)
    value: Any = None
    type: Optional[ConfigType] = None
    allowed_values: Optional[list[Any]] = None
    required: Optional[bool] = None
    category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)

    model_config = {"extra": "forbid"}


class UserConfigSet(BaseModel):
    key: str = Field(..., min_length=1, max_length=200)
    user_id: int = Field(..., ge=1)
    value: Any = None

    model_config = {"extra": "forbid"}


class ConfigDelete(BaseModel):
    key: str = Field(..., min_length=1, max_length=200)
    user_id: Optional[int] = Field(default=None, ge=1)

    model_config = {"extra": "forbid"}


class PreferenceSet(BaseModel):
    key: str = Field(..., min_length=1, max_length=200)
    value: Any = None

    model_config = {"extra": "forbid"}


class AnonymizeRequest(BaseModel):
    user_id: Optional[int] = Field(default=None, ge=1)
    email: Optional[str] = Field(default=None, max_length=255)

    model_config = {"extra": "forbid"}


class RedirectCreate(BaseModel):
    from_path: str = Field(..., min_length=1, max_length=1024)
    to_path: str = Field(..., min_length=1, max_length=1024)
    status: int = 301

    model_config = {"extra": "forbid"}


class PurgeRequest(BaseModel):
    kind: Literal['post', 'comment'] = 'post'
    older_than_days: Optional[int] = Field(default=None, ge=0)
    ids: Optional[list[int]] = Field(default=None, max_length=1000)
    dry_run: bool = True

    @model_validator(mode='after')
    def needs_scope(self):
        if self.older_than_days is None and not self.ids:
            raise ValueError('Provide older_than_days or ids')
        return self

    model_config = {"extra": "forbid"}
