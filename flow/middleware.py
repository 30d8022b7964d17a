import uuid

import structlog


class RequestContextMiddleware:
    """Bind a request id and the acting user to every log line of a request."""
    HEADER = 'HTTP_X_REQUEST_ID'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = request.META.get(self.HEADER) or uuid.uuid4().hex
        user = getattr(request, 'user', None)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.path,
            user=user.username if user is not None and user.is_authenticated else None,
        )
        response = self.get_response(request)
        response['X-Request-ID'] = request_id
        return response
