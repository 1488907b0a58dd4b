"""
RSS 2.0 feeds, the XML sitemap, robots.txt and per-post SEO metadata.

Documents are assembled as strings; every interpolated value is escaped
(text) or wrapped in CDATA (HTML bodies).
"""

from email.utils import format_datetime
from html import escape

from narravo.models.post import Post
from narravo.services.archive_service import get_archive_months
from narravo.services.excerpt_service import extract_text
from narravo.services.post_service import published_query
from narravo.utils.datetime_utils import as_utc, isoformat, utc_now

SITEMAP_HOME = ('1.0', 'daily')
SITEMAP_POST = ('0.7', 'weekly')
SITEMAP_ARCHIVE = ('0.5', 'monthly')


def rfc822(dt):
    dt = as_utc(dt)
    return format_datetime(dt) if dt else ''


def _cdata(html):
    # "]]>" cannot appear inside a CDATA section; split it across two.
    return '<![CDATA[' + (html or '').replace(']]>', ']]]]><![CDATA[>') + ']]>'


def post_url(site_url, slug):
    return f'{site_url.rstrip("/")}/{slug}'


def build_rss(posts, site_url, title, description, feed_url):
    """Render an RSS 2.0 document with an ``atom:link rel="self"``."""
    items = []
    for post in posts:
        link = post_url(site_url, post.slug)
        categories = ''.join(f'\n      <category>{escape(tag.name)}</category>' for tag in post.tags)
        items.append(f"""
    <item>
      <title>{escape(post.title)}</title>
      <link>{escape(link)}</link>
      <guid isPermaLink="true">{escape(link)}</guid>
      <pubDate>{rfc822(post.published_at)}</pubDate>
      <description>{escape(post.excerpt or '')}</description>
      <content:encoded>{_cdata(post.body_html)}</content:encoded>{categories}
    </item>""")

    return f"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"
     xmlns:atom="http://www.w3.org/2005/Atom"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>{escape(title)}</title>
    <link>{escape(site_url)}</link>
    <description>{escape(description)}</description>
    <lastBuildDate>{rfc822(utc_now())}</lastBuildDate>
    <atom:link href="{escape(feed_url)}" rel="self" type="application/rss+xml" />{''.join(items)}
  </channel>
</rss>"""


def latest_posts(count):
    return published_query().order_by(Post.published_at.desc(), Post.id.desc()).limit(count).all()


def _url_entry(loc, priority, changefreq, lastmod=None):
    lastmod_xml = f'\n    <lastmod>{escape(lastmod)}</lastmod>' if lastmod else ''
    return f"""
  <url>
    <loc>{escape(loc)}</loc>{lastmod_xml}
    <changefreq>{changefreq}</changefreq>
    <priority>{priority}</priority>
  </url>"""


def build_sitemap(site_url):
    """Home page, every published post and every archive month."""
    base = site_url.rstrip('/')
    entries = [_url_entry(f'{base}/', *SITEMAP_HOME)]

    posts = published_query().order_by(Post.published_at.desc(), Post.id.desc()).all()
    for post in posts:
        lastmod = isoformat(post.updated_at or post.published_at)
        entries.append(_url_entry(post_url(base, post.slug), *SITEMAP_POST, lastmod=lastmod))

    for month in get_archive_months(limit=1000):
        entries.append(_url_entry(f'{base}/archives/{month["slug"]}', *SITEMAP_ARCHIVE))

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{''.join(entries)}
</urlset>"""


def build_robots(site_url):
    base = site_url.rstrip('/')
    return (
        'User-agent: *\n'
        'Allow: /\n'
        'Disallow: /api/\n'
        'Disallow: /admin/\n'
        f'\nSitemap: {base}/sitemap.xml\n'
    )


def build_post_seo(post, site_url, site_name='Narravo'):
    """Title, description, canonical URL, Open Graph tags and a BlogPosting JSON-LD."""
    canonical = post_url(site_url, post.slug)
    description = extract_text(post.excerpt or '') or f'Read {post.title} on {site_name}'

    json_ld = {
        '@context': 'https://schema.org',
        '@type': 'BlogPosting',
        'headline': post.title,
        'description': description,
        'url': canonical,
        'mainEntityOfPage': canonical,
        'datePublished': isoformat(post.published_at),
        'dateModified': isoformat(post.updated_at or post.published_at),
        'publisher': {'@type': 'Organization', 'name': site_name, 'url': site_url},
    }
    if post.author is not None:
        json_ld['author'] = {'@type': 'Person', 'name': post.author.display_name}
    if post.featured_image_url:
        json_ld['image'] = post.featured_image_url

    open_graph = {
        'og:title': post.title,
        'og:description': description,
        'og:type': 'article',
        'og:url': canonical,
        'og:site_name': site_name,
    }
    if post.featured_image_url:
        open_graph['og:image'] = post.featured_image_url

    return {
        'title': f'{post.title} | {site_name}',
        'description': description,
        'canonical': canonical,
        'open_graph': open_graph,
        'twitter_card': 'summary_large_image' if post.featured_image_url else 'summary',
        'json_ld': json_ld,
    }
