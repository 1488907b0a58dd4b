"""
Pydantic schemas for API input validation.
"""

from narravo.schemas.post import (
    PostCreate,
    PostUpdate,
    PostPublish,
    PostListQuery,
    SearchQuery,
    ViewEvent,
)
from narravo.schemas.comment import (
    AttachmentIn,
    CommentCreate,
    ReactionToggle,
    ModerationRequest,
)
from narravo.schemas.admin import (
    GlobalConfigSet,
    UserConfigSet,
    ConfigDelete,
    PreferenceSet,
    AnonymizeRequest,
    RedirectCreate,
    PurgeRequest,
)
from narravo.schemas.two_factor import (
    TotpCode,
    RecoveryCodeIn,
    UploadSignRequest,
)

__all__ = [
    # Post
    'PostCreate',
    'PostUpdate',
    'PostPublish',
    'PostListQuery',
    'SearchQuery',
    'ViewEvent',
    # Comment
    'AttachmentIn',
    'CommentCreate',
    'ReactionToggle',
    'ModerationRequest',
    # Admin
    'GlobalConfigSet',
    'UserConfigSet',
    'ConfigDelete',
    'PreferenceSet',
    'AnonymizeRequest',
    'RedirectCreate',
    'PurgeRequest',
    # Two-factor / uploads
    'TotpCode',
    'RecoveryCodeIn',
    'UploadSignRequest',
]
