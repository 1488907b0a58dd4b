"""
Markdown rendering and HTML sanitization.

Posts get a fairly generous allow-list (tables, media, embeds from a short
list of video hosts); comments get a restrictive one.
"""

import re
from urllib.parse import urlparse

import bleach
import markdown

POST_ALLOWED_TAGS = [
    'p', 'br', 'hr', 'strong', 'em', 'b', 'i', 'u', 's', 'del', 'sup', 'sub', 'mark',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
    'ul', 'ol', 'li', 'dl', 'dt', 'dd',
    'a', 'img', 'code', 'pre', 'blockquote', 'span', 'div',
    'figure', 'figcaption', 'video', 'source', 'iframe',
    'table', 'thead', 'tbody', 'tfoot', 'tr', 'th', 'td', 'caption', 'colgroup', 'col',
]

COMMENT_ALLOWED_TAGS = ['p', 'a', 'strong', 'em', 'code', 'ul', 'ol', 'li', 'blockquote', 'br']
COMMENT_ALLOWED_ATTRIBUTES = {'a': ['href', 'target', 'rel']}

IFRAME_ALLOWED_HOSTS = {
    'www.youtube.com', 'youtube.com', 'www.youtube-nocookie.com',
    'player.vimeo.com', 'www.loom.com',
}

_SAFE_CODE_CLASS = re.compile(r'^(prism|language|lang|hljs|codehilite|highlight|undefined|numbers|line)[\w-]*$', re.I)

_SIMPLE_ATTRIBUTES = {
    'a': {'href', 'title', 'target', 'rel'},
    'img': {'src', 'alt', 'title', 'width', 'height', 'loading'},
    'video': {'src', 'poster', 'controls', 'muted', 'loop', 'playsinline', 'preload', 'width', 'height'},
    'source': {'src', 'type'},
    'iframe': {'width', 'height', 'title', 'allow', 'allowfullscreen', 'frameborder'},
    'td': {'colspan', 'rowspan'},
    'th': {'colspan', 'rowspan', 'scope'},
    'pre': {'data-lang'},
}


def _post_attribute_filter(tag, name, value):
    if name in _SIMPLE_ATTRIBUTES.get(tag, ()):
        return True
    if name == 'class' and tag in ('pre', 'code', 'span', 'div'):
        return all(_SAFE_CODE_CLASS.match(cls) for cls in value.split())
    if tag == 'iframe' and name == 'src':
        parsed = urlparse(value)
        return parsed.scheme == 'https' and parsed.hostname in IFRAME_ALLOWED_HOSTS
    return False


def sanitize_html(html):
    """Sanitize post HTML (markdown output or imported WordPress content)."""
    if not html:
        return ''
    return bleach.clean(
        html,
        tags=POST_ALLOWED_TAGS,
        attributes=_post_attribute_filter,
        strip=True,
        strip_comments=False,
    )


def sanitize_comment_html(html):
    if not html:
        return ''
    return bleach.clean(
        html,
        tags=COMMENT_ALLOWED_TAGS,
        attributes=COMMENT_ALLOWED_ATTRIBUTES,
        strip=True,
        strip_comments=True,
    )


def markdown_to_html(text):
    """Render markdown to raw (unsanitized) HTML."""
    return markdown.markdown(
        text or '',
        extensions=['tables', 'fenced_code', 'codehilite', 'sane_lists'],
        extension_configs={'codehilite': {'guess_lang': False}},
    )


def render_post_markdown(text):
    return sanitize_html(markdown_to_html(text))


def render_comment_markdown(text):
    return sanitize_comment_html(markdown.markdown(text or '', extensions=['sane_lists']))
