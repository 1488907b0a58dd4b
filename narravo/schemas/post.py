"""
Post-related Pydantic schemas for input validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _clean_tags(v):
    if v is None:
        return v
    result = []
    for tag in v:
        stripped = tag.strip()
        if stripped:
            if len(stripped) > 100:
                raise ValueError(f'Tag "{stripped[:20]}..." exceeds maximum length of 100 characters')
            result.append(stripped)
    return result


class PostCreate(BaseModel):
    """Schema for creating a post."""

    title: str = Field(..., min_length=1, max_length=255)
    # SECURITY: Limit content size to prevent DoS attacks (1MB max)
    body_md: str = Field(default="", max_length=1_000_000)
    slug: Optional[str] = Field(default=None, max_length=200)
    excerpt: Optional[str] = Field(default=None, max_length=2000)
    published_at: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list, max_length=50)
    category_id: Optional[int] = Field(default=None, ge=1)
    category_name: Optional[str] = Field(default=None, max_length=100)
    featured_image_url: Optional[str] = Field(default=None, max_length=1024)
    featured_image_alt: Optional[str] = Field(default=None, max_length=512)

    @field_validator('title')
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError('Title cannot be empty or whitespace only')
        return stripped

    @field_validator('tags')
    @classmethod
    def tags_not_empty_strings(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)

    model_config = {"extra": "forbid"}


class PostUpdate(BaseModel):
    """Partial update; omitted fields are left alone."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    body_md: Optional[str] = Field(default=None, max_length=1_000_000)
    slug: Optional[str] = Field(default=None, max_length=200)
    excerpt: Optional[str] = Field(default=None, max_length=2000)
    published_at: Optional[datetime] = None
    tags: Optional[list[str]] = Field(default=None, max_length=50)
    category_id: Optional[int] = Field(default=None, ge=1)
    category_name: Optional[str] = Field(default=None, max_length=100)
    featured_image_url: Optional[str] = Field(default=None, max_length=1024)
    featured_image_alt: Optional[str] = Field(default=None, max_length=512)

    @field_validator('tags')
    @classmethod
    def tags_not_empty_strings(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_tags(v)

    model_config = {"extra": "forbid"}


class PostPublish(BaseModel):
    published_at: Optional[datetime] = None

    model_config = {"extra": "forbid"}


class PostListQuery(BaseModel):
    limit: int = Field(default=10, ge=1, le=50)
    cursor: Optional[str] = Field(default=None, max_length=500)


class SearchQuery(BaseModel):
    q: str = Field(default="", max_length=500)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=50)


class ViewEvent(BaseModel):
    post_id: int = Field(..., ge=1)
    session_id: Optional[str] = Field(default=None, max_length=128)
