from flask import Blueprint, request
from narravo import db
from narravo.middleware.security import audit_log
from narravo.models.operations import ImportJob
from narravo.schemas.admin import AnonymizeRequest, RedirectCreate, PurgeRequest
from narravo.schemas.comment import ModerationRequest
from narravo.services import analytics_service, moderation_service, redirect_service, user_admin_service
from narravo.services.anti_abuse import get_client_ip
from narravo.services.data_operations import purge_soft_deleted, get_audit_log, DataOperationError
from narravo.services.moderation_service import ModerationError
from narravo.services.redirect_service import RedirectError
from narravo.services.user_admin_service import UserAdminError
from narravo.services.wxr_import_service import create_job, import_wxr
from narravo.utils.auth import admin_required, get_current_user_id
from narravo.utils.responses import success_response, error_response, get_page_args, paginate_query
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

IMPORT_STATUSES = ('publish', 'draft', 'pending', 'private', 'future')


def _client():
    return get_client_ip(request.headers, request.remote_addr), request.headers.get('User-Agent')


# Dashboard and analytics

@admin_bp.route('/admin/dashboard', methods=['GET'])
@admin_required
def dashboard():
    try:
        return success_response(analytics_service.get_dashboard_stats())
    except Exception as e:
        logger.error("Error building dashboard stats: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/analytics', methods=['GET'])
@admin_required
def site_analytics():
    try:
        return success_response(analytics_service.get_site_analytics(request.args.get('days', 30, type=int)))
    except Exception as e:
        logger.error("Error building site analytics: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/analytics/posts/<int:post_id>/sparkline', methods=['GET'])
@admin_required
def post_sparkline(post_id):
    try:
        days = request.args.get('days', 30, type=int)
        return success_response({'post_id': post_id,
                                 'series': analytics_service.get_post_sparkline(post_id, days=days)})
    except Exception as e:
        logger.error("Error building sparkline for post %s: %s", post_id, e)
        return error_response('Internal server error', 500)


# Moderation

@admin_bp.route('/admin/comments', methods=['GET'])
@admin_required
def moderation_queue():
    """Queue filtered by ``status`` (``all`` for every status), ``q`` and ``post_id``"""
    status = request.args.get('status', 'pending')
    try:
        return success_response(moderation_service.get_moderation_queue(
            status=None if status == 'all' else status,
            page=request.args.get('page', 1, type=int),
            page_size=request.args.get('page_size', 20, type=int),
            search=request.args.get('q'),
            post_id=request.args.get('post_id', type=int),
        ))
    except ModerationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error loading moderation queue: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/comments/moderate', methods=['POST'])
@admin_required
@audit_log('moderate_comments')
@validate_request(ModerationRequest)
def moderate(payload: ModerationRequest):
    try:
        results = moderation_service.moderate_comments(payload.action, payload.ids, payload.body_md)
        return success_response({'results': results})
    except ModerationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error moderating comments: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/attachments/<int:attachment_id>', methods=['DELETE'])
@admin_required
@audit_log('remove_attachment')
def remove_attachment(attachment_id):
    try:
        if not moderation_service.remove_comment_attachment(attachment_id):
            return error_response('Attachment not found', 404)
        return success_response(message='Attachment removed')
    except Exception as e:
        db.session.rollback()
        logger.error("Error removing attachment %s: %s", attachment_id, e)
        return error_response('Internal server error', 500)


# Users

@admin_bp.route('/admin/users', methods=['GET'])
@admin_required
def list_users():
    try:
        page, per_page = get_page_args()
        return success_response(user_admin_service.list_users(page=page, search=request.args.get('q'),
                                                              per_page=per_page))
    except Exception as e:
        logger.error("Error listing users: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/users/<int:user_id>', methods=['GET'])
@admin_required
def user_detail(user_id):
    try:
        detail = user_admin_service.get_user_detail(user_id)
        if detail is None:
            return error_response('User not found', 404)
        return success_response(detail)
    except Exception as e:
        logger.error("Error loading user %s: %s", user_id, e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/users/anonymize', methods=['POST'])
@admin_required
@audit_log('anonymize_user')
@validate_request(AnonymizeRequest)
def anonymize(payload: AnonymizeRequest):
    try:
        ip, ua = _client()
        result = user_admin_service.anonymize_user(
            user_id=payload.user_id, email=payload.email,
            actor_id=get_current_user_id(), ip_address=ip, user_agent=ua,
        )
        if not result['ok']:
            return error_response('User not found', 404, details=result)
        return success_response(result, 'User anonymized')
    except UserAdminError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error anonymizing user: %s", e)
        return error_response('Internal server error', 500)


# Redirects

@admin_bp.route('/admin/redirects', methods=['GET'])
@admin_required
def list_redirects():
    return success_response({'items': [row.to_dict() for row in redirect_service.list_redirects()]})


@admin_bp.route('/admin/redirects', methods=['POST'])
@admin_required
@audit_log('create_redirect')
@validate_request(RedirectCreate)
def create_redirect(payload: RedirectCreate):
    try:
        row = redirect_service.create_redirect(payload.from_path, payload.to_path, payload.status)
        return success_response(row.to_dict(), 'Redirect saved', 201)
    except RedirectError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error saving redirect: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/redirects/<int:redirect_id>', methods=['DELETE'])
@admin_required
@audit_log('delete_redirect')
def delete_redirect(redirect_id):
    try:
        if not redirect_service.delete_redirect(redirect_id):
            return error_response('Redirect not found', 404)
        return success_response(message='Redirect removed')
    except Exception as e:
        db.session.rollback()
        logger.error("Error removing redirect %s: %s", redirect_id, e)
        return error_response('Internal server error', 500)


# WordPress import

@admin_bp.route('/admin/import', methods=['POST'])
@admin_required
@audit_log('wxr_import')
def run_import():
    """
    Import an uploaded WXR file.

    Form fields: ``file`` (.xml), ``dry_run`` ("true"/"false") and repeated
    ``status`` values restricting which WordPress statuses are imported.
    """
    file = request.files.get('file')
    if file is None or not file.filename:
        return error_response('No file provided', 400)
    if not file.filename.lower().endswith('.xml'):
        return error_response('Only .xml WXR exports are supported', 400)

    dry_run = request.form.get('dry_run', 'false').lower() in ('1', 'true', 'yes')
    statuses = tuple(request.form.getlist('status')) or ('publish',)
    unknown = [s for s in statuses if s not in IMPORT_STATUSES]
    if unknown:
        return error_response(f"Unknown status: {', '.join(unknown)}", 400)

    try:
        job = create_job(file.filename, {'dry_run': dry_run, 'statuses': list(statuses)},
                         user_id=get_current_user_id())
        summary = import_wxr(file.read(), dry_run=dry_run, allowed_statuses=statuses,
                             job=job, user_id=get_current_user_id())
        status_code = 422 if job.status == 'failed' else 200
        return success_response({'job': job.to_dict(), 'summary': summary}, status_code=status_code)
    except Exception as e:
        db.session.rollback()
        logger.error("Error running WXR import: %s", e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/import/jobs', methods=['GET'])
@admin_required
def import_jobs():
    page, per_page = get_page_args()
    query = ImportJob.query.order_by(ImportJob.created_at.desc(), ImportJob.id.desc())
    return paginate_query(query, page, per_page, lambda job: job.to_dict(), items_key='jobs')


@admin_bp.route('/admin/import/jobs/<int:job_id>', methods=['GET'])
@admin_required
def import_job_detail(job_id):
    job = db.session.get(ImportJob, job_id)
    if job is None:
        return error_response('Import job not found', 404)
    return success_response(job.to_dict(include_errors=True))


# Data operations

@admin_bp.route('/admin/purge', methods=['POST'])
@admin_required
@audit_log('purge')
@validate_request(PurgeRequest)
def purge(payload: PurgeRequest):
    """Dry run by default; pass ``dry_run: false`` to delete"""
    try:
        ip, ua = _client()
        result = purge_soft_deleted(
            kind=payload.kind,
            older_than_days=payload.older_than_days,
            ids=payload.ids,
            dry_run=payload.dry_run,
            user_id=get_current_user_id(),
            ip_address=ip,
            user_agent=ua,
        )
        return success_response(result)
    except DataOperationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error purging %s rows: %s", payload.kind, e)
        return error_response('Internal server error', 500)


@admin_bp.route('/admin/audit-log', methods=['GET'])
@admin_required
def audit_log_entries():
    try:
        return success_response(get_audit_log(
            page=request.args.get('page', 1, type=int),
            page_size=request.args.get('page_size', 20, type=int),
            operation_type=request.args.get('type'),
        ))
    except Exception as e:
        logger.error("Error reading audit log: %s", e)
        return error_response('Internal server error', 500)
