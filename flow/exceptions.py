"""DRF exception handler rendering every failure as ``{ok: false, error: {code, message}}``."""
import structlog
from django.http import Http404
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from flow.errors import FlowError

logger = structlog.get_logger(__name__)

PASSTHROUGH_HEADERS = ('WWW-Authenticate', 'Retry-After')


def _view_name(context) -> str:
    view = context.get('view') if context else None
    return type(view).__name__ if view is not None else ''


def api_exception_handler(exc, context):
    if isinstance(exc, FlowError):
        logger.info('flow_error', code=exc.code, message=exc.message, view=_view_name(context), **exc.context)
        return Response({'ok': False, 'error': exc.as_dict()}, status=exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled_error', view=_view_name(context), error=str(exc))
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    if isinstance(exc, Http404):
        code = 'not_found'
    else:
        code = getattr(exc, 'default_code', None) or 'api_error'
    logger.info('api_error', code=code, status=resp.status_code, view=_view_name(context))
    headers = {name: resp[name] for name in PASSTHROUGH_HEADERS if resp.has_header(name)}
    return Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code,
                    headers=headers)
