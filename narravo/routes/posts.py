from flask import Blueprint, current_app, request
from narravo import db, limiter
from narravo.middleware.security import audit_log, rate_limit_search
from narravo.schemas.post import PostCreate, PostUpdate, PostPublish, PostListQuery, SearchQuery
from narravo.services import post_service
from narravo.services.analytics_service import get_post_view_counts
from narravo.services.comment_service import count_approved
from narravo.services.feed_service import build_post_seo
from narravo.services.post_service import PostError
from narravo.services.reaction_service import get_reaction_counts, get_user_reactions
from narravo.services.search_service import search_posts, SearchError
from narravo.utils.auth import admin_required, get_current_user_id, get_optional_user
from narravo.utils.responses import success_response, error_response, get_page_args
from narravo.utils.validation import validate_request, validate_query_params
import logging

logger = logging.getLogger(__name__)

posts_bp = Blueprint('posts', __name__)


def _post_error(e):
    message = str(e)
    if message == 'Post not found':
        return error_response(message, 404)
    if message == 'Slug already in use':
        return error_response(message, 409)
    return error_response(message, 400)


@posts_bp.route('/posts', methods=['GET'])
@validate_query_params(PostListQuery)
def list_posts(params: PostListQuery):
    """Published posts, newest first, with a keyset cursor"""
    try:
        page = post_service.list_posts(limit=params.limit, cursor=params.cursor)
        return success_response(page)
    except PostError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error listing posts: %s", e)
        return error_response('Internal server error', 500)


@posts_bp.route('/posts/<slug>', methods=['GET'])
def get_post(slug):
    """A single published post with taxonomy, neighbours, reactions and view counts"""
    try:
        post = post_service.get_post_by_slug(slug)
        if post is None:
            return error_response('Post not found', 404)

        data = post.to_dict()
        data['comment_count'] = count_approved(post.id)
        data['reactions'] = get_reaction_counts('post', [post.id]).get(post.id, {})
        data['views'] = get_post_view_counts([post.id])[post.id]
        data['neighbours'] = post_service.get_previous_next(post)

        user = get_optional_user()
        if user is not None:
            data['my_reactions'] = get_user_reactions('post', [post.id], user.id).get(post.id, {})
        return success_response(data)
    except Exception as e:
        logger.error("Error getting post %s: %s", slug, e)
        return error_response('Internal server error', 500)


@posts_bp.route('/posts/<slug>/seo', methods=['GET'])
def get_post_seo(slug):
    try:
        post = post_service.get_post_by_slug(slug)
        if post is None:
            return error_response('Post not found', 404)
        return success_response(build_post_seo(post, current_app.config['SITE_URL'],
                                               current_app.config['SITE_NAME']))
    except Exception as e:
        logger.error("Error building SEO for %s: %s", slug, e)
        return error_response('Internal server error', 500)


@posts_bp.route('/search', methods=['GET'])
@rate_limit_search()
@validate_query_params(SearchQuery)
def search(params: SearchQuery):
    try:
        return success_response(search_posts(params.q, page=params.page, page_size=params.page_size))
    except SearchError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error searching posts: %s", e)
        return error_response('Internal server error', 500)


# -- admin ---------------------------------------------------------------

@posts_bp.route('/admin/posts', methods=['GET'])
@admin_required
def admin_list_posts():
    try:
        page, per_page = get_page_args()
        result = post_service.admin_list_posts(
            page=page,
            per_page=per_page,
            status=request.args.get('status'),
            search=request.args.get('search'),
            category=request.args.get('category'),
            tag=request.args.get('tag'),
        )
        return success_response(result)
    except PostError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error listing admin posts: %s", e)
        return error_response('Internal server error', 500)


@posts_bp.route('/admin/posts/<int:post_id>', methods=['GET'])
@admin_required
def admin_get_post(post_id):
    post = post_service.get_post_by_id(post_id)
    if post is None:
        return error_response('Post not found', 404)
    return success_response(post.to_dict(include_admin=True))


@posts_bp.route('/admin/posts', methods=['POST'])
@limiter.limit("60 per hour")
@admin_required
@validate_request(PostCreate)
@audit_log('post_create')
def create_post(payload: PostCreate):
    try:
        post = post_service.create_post(
            author_id=get_current_user_id(),
            **payload.model_dump(),
        )
        return success_response(post.to_dict(include_admin=True), status_code=201)
    except PostError as e:
        db.session.rollback()
        return _post_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error creating post: %s", e)
        return error_response('Internal server error', 500)


@posts_bp.route('/admin/posts/<int:post_id>', methods=['PUT'])
@admin_required
@validate_request(PostUpdate)
@audit_log('post_update')
def update_post(payload: PostUpdate, post_id):
    try:
        # Only fields present in the body are touched; explicit nulls clear.
        post = post_service.update_post(post_id, **payload.model_dump(include=payload.model_fields_set))
        return success_response(post.to_dict(include_admin=True))
    except PostError as e:
        db.session.rollback()
        return _post_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error updating post %s: %s", post_id, e)
        return error_response('Internal server error', 500)


@posts_bp.route('/admin/posts/<int:post_id>', methods=['DELETE'])
@admin_required
@audit_log('post_delete')
def delete_post(post_id):
    try:
        post_service.delete_post(post_id, user_id=get_current_user_id())
        return success_response(message='Post deleted')
    except PostError as e:
        return _post_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error deleting post %s: %s", post_id, e)
        return error_response('Internal server error', 500)


_STATE_ACTIONS = {
    'restore': post_service.restore_post,
    'unpublish': post_service.unpublish_post,
    'lock': post_service.lock_post,
    'unlock': post_service.unlock_post,
}


@posts_bp.route('/admin/posts/<int:post_id>/publish', methods=['POST'])
@admin_required
@audit_log('post_publish')
def publish_post(post_id):
    try:
        published_at = None
        data = request.get_json(silent=True)
        if data:
            published_at = PostPublish.model_validate(data).published_at
        post = post_service.publish_post(post_id, published_at=published_at)
        return success_response(post.to_dict(include_admin=True))
    except PostError as e:
        return _post_error(e)
    except ValueError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error publishing post %s: %s", post_id, e)
        return error_response('Internal server error', 500)


@posts_bp.route('/admin/posts/<int:post_id>/<action>', methods=['POST'])
@admin_required
@audit_log('post_state_change')
def change_post_state(post_id, action):
    handler = _STATE_ACTIONS.get(action)
    if handler is None:
        return error_response('Unknown action', 404)
    try:
        post = handler(post_id)
        return success_response(post.to_dict(include_admin=True))
    except PostError as e:
        return _post_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error applying %s to post %s: %s", action, post_id, e)
        return error_response('Internal server error', 500)
