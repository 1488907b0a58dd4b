"""
WordPress (WXR) import.

Items are keyed on their GUID, so re-running an import updates posts in
place instead of duplicating them. Attachments are collected first so that
``_thumbnail_id`` post meta can be resolved to a featured image URL no matter
where the attachment item sits in the file.
"""

import logging
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from urllib.parse import urlparse
from xml.etree import ElementTree as ET

from narravo import db
from narravo.models.comment import Comment
from narravo.models.operations import ImportJob, ImportJobError
from narravo.models.post import Post
from narravo.services.comment_service import build_path, next_sibling_ordinal
from narravo.services.excerpt_service import generate_excerpt
from narravo.services.redirect_service import create_redirect, invalidate_cache, RedirectError
from narravo.services.taxonomy_service import upsert_tag, upsert_category
from narravo.utils.datetime_utils import utc_now
from narravo.utils.markdown import sanitize_html, sanitize_comment_html
from narravo.utils.slug import slugify

logger = logging.getLogger(__name__)

NS = {
    'wp': 'http://wordpress.org/export/1.2/',
    'content': 'http://purl.org/rss/1.0/modules/content/',
    'excerpt': 'http://wordpress.org/export/1.2/excerpt/',
    'dc': 'http://purl.org/dc/elements/1.1/',
}

WP_EXPORT_NAMESPACE = 'http://wordpress.org/export/'

SKIPPED_COMMENT_TYPES = ('pingback', 'trackback')


class WxrImportError(ValueError):
    pass


def _text(elem, path):
    if elem is None:
        return ''
    return (elem.findtext(path, default='', namespaces=NS) or '').strip()


def _parse_wp_date(value):
    """``YYYY-MM-DD HH:MM:SS`` in GMT; WordPress writes zeros for unset dates."""
    if not value or value.startswith('0000'):
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d %H:%M:%S').replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_pub_date(value):
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _postmeta(item):
    meta = {}
    for node in item.findall('wp:postmeta', NS):
        key = _text(node, 'wp:meta_key')
        if key:
            meta[key] = _text(node, 'wp:meta_value')
    return meta


def _normalize_export_namespaces(root):
    """Map WXR 1.0 and 1.1 tags onto the 1.2 namespaces used by ``NS``."""
    prefix = '{' + WP_EXPORT_NAMESPACE
    for elem in root.iter():
        if not isinstance(elem.tag, str) or not elem.tag.startswith(prefix):
            continue
        uri, local = elem.tag[1:].split('}', 1)
        target = NS['excerpt'] if uri.rstrip('/').endswith('/excerpt') else NS['wp']
        elem.tag = f'{{{target}}}{local}'


def parse_wxr(source):
    """
    Parse a WXR document from a path, file object, bytes or str.

    Returns:
        list[Element]: the channel's ``item`` elements

    Raises:
        WxrImportError: empty input or malformed XML
    """
    if isinstance(source, (bytes, str)) and not source.strip():
        raise WxrImportError('WXR file is empty')
    try:
        if isinstance(source, bytes) or (isinstance(source, str) and source.lstrip().startswith('<')):
            root = ET.fromstring(source)
        else:
            root = ET.parse(source).getroot()
    except ET.ParseError as e:
        raise WxrImportError(f'Malformed XML: {e}')

    channel = root.find('channel')
    if root.tag != 'rss' or channel is None:
        raise WxrImportError('Not a WXR document: missing rss/channel')
    _normalize_export_namespaces(root)
    return channel.findall('item')


def _parse_comments(item):
    comments = []
    for node in item.findall('wp:comment', NS):
        comment_type = _text(node, 'wp:comment_type')
        comments.append({
            'id': _text(node, 'wp:comment_id'),
            'parent_id': _text(node, 'wp:comment_parent') or '0',
            'author': _text(node, 'wp:comment_author') or None,
            'author_email': _text(node, 'wp:comment_author_email') or None,
            'content': node.findtext('wp:comment_content', default='', namespaces=NS) or '',
            'approved': _text(node, 'wp:comment_approved') == '1',
            'type': comment_type or 'comment',
            'created_at': _parse_wp_date(_text(node, 'wp:comment_date_gmt')),
        })
    return comments


def parse_wxr_item(item):
    """Return a ``post`` or ``attachment`` dict, or None for other item types."""
    post_type = _text(item, 'wp:post_type')
    guid = _text(item, 'guid')

    if post_type == 'attachment':
        meta = _postmeta(item)
        return {
            'type': 'attachment',
            'post_id': _text(item, 'wp:post_id'),
            'guid': guid,
            'title': _text(item, 'title'),
            'attachment_url': _text(item, 'wp:attachment_url') or guid,
            'alt': meta.get('_wp_attachment_image_alt') or None,
            'parent_id': _text(item, 'wp:post_parent') or None,
        }

    if post_type != 'post':
        return None

    title = _text(item, 'title')
    meta = _postmeta(item)
    categories, tags = [], []
    for node in item.findall('category'):
        name = (node.text or '').strip()
        if not name:
            continue
        if node.get('domain') == 'category':
            categories.append(name)
        elif node.get('domain') == 'post_tag':
            tags.append(name)

    return {
        'type': 'post',
        'post_id': _text(item, 'wp:post_id'),
        'imported_system_id': guid or None,
        'title': title,
        'slug': _text(item, 'wp:post_name') or slugify(title),
        'html': item.findtext('content:encoded', default='', namespaces=NS) or '',
        'excerpt': _text(item, 'excerpt:encoded') or None,
        'author': _text(item, 'dc:creator') or None,
        'published_at': _parse_wp_date(_text(item, 'wp:post_date_gmt')) or _parse_pub_date(_text(item, 'pubDate')),
        'original_url': _text(item, 'link') or None,
        'featured_image_id': meta.get('_thumbnail_id') or None,
        'status': _text(item, 'wp:status') or 'publish',
        'categories': categories,
        'tags': tags,
        'comments': _parse_comments(item),
    }


def _import_comments(post, comments):
    """Insert comments not seen before; WordPress parent ids drive threading."""
    by_wp_id = {}
    for existing in Comment.query.filter(Comment.post_id == post.id, Comment.imported_system_id.isnot(None)):
        by_wp_id[existing.imported_system_id.rsplit('#', 1)[-1]] = existing

    pending = [c for c in comments if c['type'] not in SKIPPED_COMMENT_TYPES and c['content'].strip()]
    imported = 0
    while pending:
        progressed = False
        remaining = []
        for data in pending:
            if data['id'] in by_wp_id:
                progressed = True
                continue
            parent = None
            if data['parent_id'] != '0':
                parent = by_wp_id.get(data['parent_id'])
                if parent is None:
                    remaining.append(data)
                    continue
            comment = Comment(
                post_id=post.id,
                parent_id=parent.id if parent else None,
                path=build_path(parent.path if parent else None, next_sibling_ordinal(post.id, parent)),
                depth=parent.depth + 1 if parent else 0,
                body_md=None,
                body_html=sanitize_comment_html(data['content']),
                status='approved' if data['approved'] else 'pending',
                author_name=data['author'],
                imported_system_id=f"{post.imported_system_id}#{data['id']}",
            )
            if data['created_at']:
                comment.created_at = data['created_at']
            db.session.add(comment)
            db.session.flush()
            by_wp_id[data['id']] = comment
            imported += 1
            progressed = True
        if not progressed:
            # Orphans whose parent never appears become top-level comments.
            for data in remaining:
                data['parent_id'] = '0'
        pending = remaining
    return imported


def _redirect_for(post_data, slug):
    if not post_data.get('original_url'):
        return None
    path = urlparse(post_data['original_url']).path or ''
    target = f'/{slug}'
    if not path or path == '/' or path.rstrip('/') == target:
        return None
    return path


def _import_post(data, attachments):
    """Create or update a single post; returns ``(post, redirect_created)``."""
    post = Post.query.filter_by(imported_system_id=data['imported_system_id']).first()
    html = sanitize_html(data['html'])
    excerpt = data['excerpt'] or generate_excerpt(data['html'])
    excerpt = sanitize_html(excerpt) if excerpt else None

    slug = slugify(data['slug'])
    if post is None:
        base, n = slug, 2
        while Post.query.filter_by(slug=slug).first() is not None:
            slug = f'{base}-{n}'
            n += 1
        post = Post(title=data['title'] or 'Untitled', slug=slug, imported_system_id=data['imported_system_id'])
        db.session.add(post)
    else:
        slug = post.slug
        post.title = data['title'] or post.title

    post.body_html = html
    post.body_md = None
    post.excerpt = excerpt
    post.published_at = data['published_at'] if data['status'] == 'publish' else None

    featured = attachments.get(data['featured_image_id']) if data['featured_image_id'] else None
    if featured:
        post.featured_image_url = featured['attachment_url']
        post.featured_image_alt = featured['alt']

    if data['categories']:
        post.category_id = upsert_category(data['categories'][0]).id
    post.tags = [upsert_tag(name) for name in dict.fromkeys(data['tags'])]
    db.session.flush()

    _import_comments(post, data['comments'])

    redirect_created = False
    from_path = _redirect_for(data, slug)
    if from_path:
        try:
            create_redirect(from_path, f'/{slug}', 301, commit=False)
            redirect_created = True
        except RedirectError as e:
            logger.warning("Skipping redirect for %s: %s", from_path, e)
    return post, redirect_created


def _record_error(job, summary, identifier, error_type, message, item_data=None):
    summary['errors'].append({'item': identifier, 'type': error_type, 'error': message})
    if job is not None:
        db.session.add(ImportJobError(
            job_id=job.id,
            item_identifier=identifier,
            error_type=error_type,
            error_message=message,
            item_data=item_data,
        ))
        db.session.commit()


def _sync_job(job, summary, status=None):
    if job is None:
        return
    for field in ('total_items', 'posts_imported', 'attachments_processed', 'redirects_created', 'skipped'):
        setattr(job, field, summary[field])
    if status:
        job.status = status
        if status in ('completed', 'failed', 'cancelled'):
            job.finished_at = utc_now()
    db.session.commit()


def create_job(file_name, options=None, user_id=None):
    job = ImportJob(file_name=file_name, options=options or {}, user_id=user_id, status='queued')
    db.session.add(job)
    db.session.commit()
    return job


def import_wxr(source, dry_run=False, allowed_statuses=('publish',), job=None, user_id=None):
    """
    Import posts, attachments, taxonomy, comments and redirects from WXR.

    Per-item failures are recorded and the import carries on. A document
    that does not parse at all yields a summary with a single error.

    Returns:
        dict: ``total_items, posts_imported, attachments_processed,
        redirects_created, skipped, errors, dry_run``
    """
    summary = {
        'total_items': 0,
        'posts_imported': 0,
        'attachments_processed': 0,
        'redirects_created': 0,
        'skipped': 0,
        'errors': [],
        'dry_run': dry_run,
    }
    if job is not None:
        job.status = 'running'
        job.started_at = utc_now()
        db.session.commit()

    try:
        items = parse_wxr(source)
    except WxrImportError as e:
        logger.error("WXR import failed: %s", e)
        _record_error(job, summary, None, 'parse', str(e))
        _sync_job(job, summary, 'failed')
        return summary

    summary['total_items'] = len(items)
    parsed = []
    attachments = {}
    for item in items:
        data = parse_wxr_item(item)
        if data is None:
            summary['skipped'] += 1
        elif data['type'] == 'attachment':
            attachments[data['post_id']] = data
            summary['attachments_processed'] += 1
        else:
            parsed.append(data)

    for data in parsed:
        identifier = data['imported_system_id'] or data['post_id'] or data['title']
        if not data['imported_system_id']:
            summary['skipped'] += 1
            continue
        if data['status'] not in allowed_statuses:
            summary['skipped'] += 1
            continue
        if dry_run:
            summary['posts_imported'] += 1
            if _redirect_for(data, slugify(data['slug'])):
                summary['redirects_created'] += 1
            continue
        try:
            _, redirect_created = _import_post(data, attachments)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error("Failed to import %s: %s", identifier, e)
            _record_error(job, summary, identifier, type(e).__name__, str(e),
                          {'title': data['title'], 'slug': data['slug']})
            continue
        summary['posts_imported'] += 1
        if redirect_created:
            summary['redirects_created'] += 1
        _sync_job(job, summary)

    if not dry_run and summary['redirects_created']:
        invalidate_cache()

    _sync_job(job, summary, 'completed')
    logger.info(
        "WXR import finished: %d posts, %d attachments, %d redirects, %d skipped, %d errors%s",
        summary['posts_imported'], summary['attachments_processed'], summary['redirects_created'],
        summary['skipped'], len(summary['errors']), ' (dry run)' if dry_run else '',
    )
    return summary
