import json
import logging
from functools import wraps

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.http import JsonResponse

from apps.core.utils.exceptions import NotFoundError, StoreError

logger = logging.getLogger(__name__)


def request_data(request):
    """Body of a JSON request, or the form-encoded POST / query params."""
    if request.method == 'GET':
        return request.GET

    if request.content_type == 'application/json':
        if not request.body:
            return {}
        try:
            payload = json.loads(request.body)
        except ValueError as exc:
            raise ValidationError(f'Malformed JSON body: {exc}') from exc
        if not isinstance(payload, dict):
            raise ValidationError('JSON body must be an object.')
        return payload

    return request.POST


def error_response(message, status, fields=None):
    body = {'error': message}
    if fields:
        body['fields'] = fields
    return JsonResponse(body, status=status)


def form_error_response(form):
    return error_response('Invalid request.', 400, fields=form.errors.get_json_data())


def _validation_payload(exc):
    if hasattr(exc, 'error_dict'):
        return '; '.join(exc.messages), exc.message_dict
    return '; '.join(exc.messages), None


def json_errors(view_func):
    """Map service exceptions onto JSON responses."""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except ValidationError as exc:
            message, fields = _validation_payload(exc)
            return error_response(message, 400, fields=fields)
        except NotFoundError as exc:
            return error_response(exc.message, 404)
        except StoreError as exc:
            logger.error('Ledger store failure on %s: %s', request.path, exc.message)
            return error_response(exc.message, 500)
        except DatabaseError as exc:
            logger.exception('Database failure on %s', request.path)
            return error_response(str(exc), 500)

    return wrapper
