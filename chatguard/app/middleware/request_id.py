"""Request ID middleware for log correlation.

Every response carries an X-Request-ID header. Rate limit decisions are
logged with the same id, so a 429 seen by a client can be traced back to
the log line that produced it.
"""

import re
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# Client supplied ids are echoed into logs and headers, so only accept
# short opaque tokens.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request id to request.state and the response headers.

    An incoming X-Request-ID is reused when it looks like an opaque token,
    otherwise a UUID is generated.
    """

    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self.header_name, "")
        if not _VALID_REQUEST_ID.match(request_id):
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
