import re
import unicodedata


def slugify(text, max_length=200, fallback='untitled'):
    """Lowercase ASCII slug; runs of anything else collapse into one hyphen."""
    if not text:
        return fallback
    normalized = unicodedata.normalize('NFKD', str(text)).encode('ascii', 'ignore').decode('ascii')
    slug = re.sub(r'[^a-z0-9]+', '-', normalized.lower()).strip('-')
    slug = slug[:max_length].rstrip('-')
    return slug or fallback
