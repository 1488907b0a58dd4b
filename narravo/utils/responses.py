"""
Response helpers for the Narravo API.
Every JSON endpoint answers with the same envelope so clients can branch on
``success`` alone.
"""

from flask import jsonify, request
from narravo.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def get_page_args(default_per_page=DEFAULT_PAGE_SIZE, max_per_page=MAX_PAGE_SIZE):
    """Read ``page`` / ``per_page`` from the query string, clamped to sane bounds."""
    page = request.args.get('page', 1, type=int) or 1
    per_page = request.args.get('per_page', default_per_page, type=int) or default_per_page
    return max(page, 1), max(1, min(per_page, max_per_page))


def build_pagination_response(query, page, per_page, serializer_func,
                               items_key='items', extra_fields=None):
    """
    Paginate a SQLAlchemy query into a plain dict.

    Args:
        query: SQLAlchemy query object
        page: Current page number (1-indexed)
        per_page: Number of items per page
        serializer_func: Function to serialize each item (item -> dict)
        items_key: Key name for the items list ('posts', 'comments', ...)
        extra_fields: Optional dict merged into the result

    Returns:
        dict: ``{items_key: [...], 'pagination': {...}}``
    """
    paginated = query.paginate(page=page, per_page=per_page, error_out=False)

    result = {
        items_key: [serializer_func(item) for item in paginated.items],
        'pagination': {
            'page': page,
            'per_page': per_page,
            'total': paginated.total,
            'pages': paginated.pages,
            'has_next': paginated.has_next,
            'has_prev': paginated.has_prev
        }
    }
    if extra_fields:
        result.update(extra_fields)
    return result


def paginate_query(query, page, per_page, serializer_func, items_key='items', extra_fields=None):
    """Paginate a query and wrap it in a success envelope."""
    data = build_pagination_response(
        query, page, per_page, serializer_func,
        items_key=items_key, extra_fields=extra_fields
    )
    return success_response(data)


def success_response(data=None, message=None, status_code=200):
    """
    Build a standardized success response.

    Args:
        data: Response data (dict or list)
        message: Optional success message
        status_code: HTTP status code (default 200)

    Returns:
        tuple: (response, status_code)
    """
    response = {'success': True}
    if data is not None:
        response['data'] = data
    if message:
        response['message'] = message
    return jsonify(response), status_code


def error_response(error, status_code=400, details=None):
    """
    Build a standardized error response.

    Args:
        error: Error message
        status_code: HTTP status code (default 400)
        details: Optional additional details

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'success': False,
        'error': error
    }
    if details:
        response['details'] = details
    return jsonify(response), status_code

