"""
Excerpt generation from rendered post HTML.

The HTML is parsed with BeautifulSoup; media and block code are dropped,
blockquotes flattened, everything but a handful of inline tags unwrapped, and
the first meaningful paragraph is truncated on a word boundary without
leaving tags open.
"""

import re
from html import escape

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from narravo.utils.constants import EXCERPT_MAX_CHARS, EXCERPT_ELLIPSIS, EXCERPT_MIN_CHARS

MORE_RE = re.compile(r'<!--\s*more\s*-->', re.I)

DROP_TAGS = [
    'img', 'video', 'audio', 'iframe', 'script', 'style', 'svg', 'canvas',
    'form', 'noscript', 'object', 'embed', 'figure', 'pre',
]
KEEP_TAGS = frozenset({'p', 'span', 'em', 'strong', 'b', 'i', 'u', 'code', 'a'})
KEEP_ATTRIBUTES = {'a': ('href', 'title', 'rel', 'target')}

_WS = re.compile(r'\s+')


def parse_html(html):
    return BeautifulSoup(html or '', 'html.parser')


def has_more_marker(html):
    return bool(MORE_RE.search(html or ''))


def extract_before_more(html):
    html = html or ''
    match = MORE_RE.search(html)
    return html[:match.start()] if match else html


def _collapse(text):
    return _WS.sub(' ', text)


def extract_text(html):
    """Visible text of an HTML fragment, whitespace-normalized."""
    soup = parse_html(html)
    for element in soup(['script', 'style', 'noscript']):
        if not element.decomposed:
            element.decompose()
    return _collapse(soup.get_text()).strip()


def strip_unwanted(soup):
    for element in soup.find_all(DROP_TAGS):
        if not element.decomposed:
            element.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    quote = soup.find('blockquote')
    while quote is not None:
        paragraph = soup.new_tag('p')
        paragraph.string = _collapse(quote.get_text()).strip()
        quote.replace_with(paragraph)
        quote = soup.find('blockquote')

    for paragraph in soup.find_all('p'):
        if not paragraph.decomposed and not paragraph.get_text(strip=True):
            paragraph.decompose()

    for element in soup.find_all(True):
        if element.name not in KEEP_TAGS:
            element.unwrap()
        else:
            allowed = KEEP_ATTRIBUTES.get(element.name, ())
            element.attrs = {k: v for k, v in element.attrs.items() if k in allowed}
    return soup


def _render_attrs(tag):
    parts = []
    for name, value in tag.attrs.items():
        if isinstance(value, list):
            value = ' '.join(value)
        parts.append(f' {name}="{escape(value, quote=True)}"')
    return ''.join(parts)


class _Truncator:
    def __init__(self, max_chars, ellipsis):
        self.remaining = max_chars
        self.ellipsis = ellipsis
        self.truncated = False

    def render(self, nodes):
        out = []
        for node in nodes:
            if self.truncated:
                break
            if isinstance(node, Tag):
                inner = self.render(node.children)
                out.append(f'<{node.name}{_render_attrs(node)}>{inner}</{node.name}>')
            elif isinstance(node, NavigableString) and not isinstance(node, Comment):
                out.append(escape(self._take(_collapse(str(node))), quote=False))
        return ''.join(out)

    def _take(self, text):
        if len(text) <= self.remaining:
            self.remaining -= len(text)
            return text
        cut = text[:self.remaining]
        # Back off to the last whole word when the cut lands mid-word.
        if not text[self.remaining].isspace() and ' ' in cut:
            cut = cut[:cut.rfind(' ')]
        self.remaining = 0
        self.truncated = True
        return cut.rstrip() + self.ellipsis


def generate_excerpt(html, max_chars=EXCERPT_MAX_CHARS, ellipsis=EXCERPT_ELLIPSIS):
    """Build a short inline-HTML excerpt; '' when nothing meaningful is left."""
    if not html or not isinstance(html, str):
        return ''

    more = has_more_marker(html)
    soup = strip_unwanted(parse_html(extract_before_more(html) if more else html))

    paragraphs = soup.find_all('p')
    nodes = list(soup.children)
    for paragraph in paragraphs:
        if len(_collapse(paragraph.get_text()).strip()) >= EXCERPT_MIN_CHARS:
            nodes = [paragraph]
            break
    else:
        if paragraphs:
            nodes = [paragraphs[0]]

    excerpt = _collapse(_Truncator(max_chars, ellipsis).render(nodes)).strip()

    if len(extract_text(excerpt)) < EXCERPT_MIN_CHARS and not more:
        return ''
    return excerpt
