"""Application-wide constants.

Centralizes magic numbers and configuration values for maintainability.
"""

# Pagination defaults
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
TAXONOMY_MAX_LIMIT = 50

# Comments
DEFAULT_MAX_COMMENT_DEPTH = 5
DEFAULT_COMMENTS_TOP_PAGE_SIZE = 10
DEFAULT_COMMENTS_REPLIES_PAGE_SIZE = 3
COMMENT_PATH_SEGMENT_WIDTH = 4

# Anti-abuse
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_RETENTION_SECONDS = 3600
DEFAULT_COMMENTS_PER_MINUTE = 5
DEFAULT_REACTIONS_PER_MINUTE = 20
DEFAULT_MIN_SUBMIT_SECONDS = 2
TWO_FACTOR_MAX_ATTEMPTS = 5
TWO_FACTOR_WINDOW_SECONDS = 60

# Excerpts
EXCERPT_MAX_CHARS = 220
EXCERPT_ELLIPSIS = '…'
EXCERPT_MIN_CHARS = 30

# Search
SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100

# Archives
ARCHIVE_MIN_YEAR = 2000
DEFAULT_ARCHIVE_MONTHS = 24

# Feeds
DEFAULT_FEED_COUNT = 20

# Analytics
DEFAULT_SESSION_WINDOW_MINUTES = 30
DEFAULT_TRENDING_DAYS = 7
SPARKLINE_DAYS = 30
MAX_ANALYTICS_DAYS = 365

# File size limits (in bytes)
DEFAULT_IMAGE_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_VIDEO_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_VIDEO_MAX_DURATION_SECONDS = 120
BANNER_MAX_BYTES = 5 * 1024 * 1024
PRESIGNED_URL_EXPIRY_SECONDS = 300
TEMPORARY_UPLOAD_MAX_AGE_HOURS = 24

# Two-factor
RECOVERY_CODE_COUNT = 10
TRUSTED_DEVICE_DAYS = 30
TOTP_ISSUER = 'Narravo'

# Redirects
REDIRECT_CACHE_TTL = 60

# Text limits
MAX_TITLE_LENGTH = 255
MAX_TAG_NAME_LENGTH = 100
MAX_COMMENT_LENGTH = 10000

# Cache TTL (in seconds)
DEFAULT_CACHE_TTL = 300  # 5 minutes
FEED_CACHE_TTL = 600     # 10 minutes
