from .user import User
from .tag import Tag, post_tags
from .category import Category
from .post import Post
from .comment import Comment, CommentAttachment
from .reaction import Reaction
from .redirect import Redirect
from .configuration import Configuration
from .analytics import PostDailyView, PostViewEvent
from .security import OwnerTotp, RecoveryCode, TrustedDevice, WebAuthnCredential, SecurityActivity
from .upload import Upload
from .operations import ImportJob, ImportJobError, DataOperationLog

__all__ = [
    'User',
    'Tag',
    'post_tags',
    'Category',
    'Post',
    'Comment',
    'CommentAttachment',
    'Reaction',
    'Redirect',
    'Configuration',
    'PostDailyView',
    'PostViewEvent',
    'OwnerTotp',
    'RecoveryCode',
    'TrustedDevice',
    'WebAuthnCredential',
    'SecurityActivity',
    'Upload',
    'ImportJob',
    'ImportJobError',
    'DataOperationLog',
]
