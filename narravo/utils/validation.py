"""
Pydantic integration for Flask route handlers.
"""

from functools import wraps
from typing import Type, TypeVar, Callable, Any
from flask import request
from pydantic import BaseModel, ValidationError
from narravo.utils.responses import error_response


def escape_like(value: str) -> str:
    """
    Escape LIKE/ILIKE wildcards in user input.

    Example:
        term = escape_like(q)
        query.filter(Post.title.ilike(f'%{term}%', escape='\\\\'))
    """
    if not value:
        return value
    return (value
            .replace('\\', '\\\\')
            .replace('%', '\\%')
            .replace('_', '\\_'))


T = TypeVar('T', bound=BaseModel)


def validate_request(schema: Type[T]) -> Callable:
    """
    Validate the JSON body against ``schema`` and pass the model as the
    first positional argument.

    Usage:
        @posts_bp.route('/admin/posts', methods=['POST'])
        @validate_request(PostCreate)
        def create_post(payload: PostCreate):
            ...
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            data = request.get_json(silent=True)

            if data is None:
                return error_response('Request body is required', 400)

            try:
                validated = schema.model_validate(data)
            except ValidationError as e:
                return error_response(
                    'Validation failed',
                    400,
                    details={'validation_errors': format_validation_errors(e)}
                )

            return f(validated, *args, **kwargs)
        return wrapper
    return decorator


def validate_query_params(schema: Type[T]) -> Callable:
    """
    Validate query-string parameters against ``schema``; repeated keys become lists.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            data = {}
            for key in request.args:
                values = request.args.getlist(key)
                data[key] = values if len(values) > 1 else values[0]

            try:
                validated = schema.model_validate(data)
            except ValidationError as e:
                return error_response(
                    'Invalid query parameters',
                    400,
                    details={'validation_errors': format_validation_errors(e)}
                )

            return f(validated, *args, **kwargs)
        return wrapper
    return decorator


def format_validation_errors(error: ValidationError) -> list[dict]:
    """Flatten pydantic errors into ``[{field, message, type}]``."""
    errors = []
    for err in error.errors():
        errors.append({
            'field': '.'.join(str(loc) for loc in err['loc']),
            'message': err['msg'],
            'type': err['type']
        })
    return errors

