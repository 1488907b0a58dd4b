"""
Comment, reaction and moderation schemas.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from narravo.utils.constants import MAX_COMMENT_LENGTH


class AttachmentIn(BaseModel):
    kind: Literal['image', 'video']
    url: str = Field(..., min_length=1, max_length=1024)
    poster_url: Optional[str] = Field(default=None, max_length=1024)
    mime: Optional[str] = Field(default=None, max_length=100)
    bytes: Optional[int] = Field(default=None, ge=0)


class CommentCreate(BaseModel):
    """Schema for posting a comment or reply."""

    post_id: int = Field(..., ge=1)
    body_md: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
    parent_id: Optional[int] = Field(default=None, ge=1)
    attachments: list[AttachmentIn] = Field(default_factory=list, max_length=4)
    # Anti-abuse fields filled in by the browser
    honeypot: Optional[str] = Field(default=None, max_length=500)
    submit_start_time: Optional[float] = None

    @field_validator('body_md')
    @classmethod
    def body_not_empty(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError('Comment cannot be empty or whitespace only')
        return stripped

    model_config = {"extra": "forbid"}


class ReactionToggle(BaseModel):
    target_type: Literal['post', 'comment']
    target_id: int = Field(..., ge=1)
    kind: Literal['like', 'dislike', 'heart', 'laugh', 'thumbsup', 'thumbsdown']
    honeypot: Optional[str] = Field(default=None, max_length=500)
    submit_start_time: Optional[float] = None

    model_config = {"extra": "forbid"}


class ModerationRequest(BaseModel):
    action: Literal['approve', 'spam', 'delete', 'hard_delete', 'edit']
    ids: list[int] = Field(..., min_length=1, max_length=200)
    body_md: Optional[str] = Field(default=None, max_length=MAX_COMMENT_LENGTH)

    model_config = {"extra": "forbid"}
