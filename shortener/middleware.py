"""Owner cookie middleware."""

import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from shortener.exceptions import InvalidTokenError


class OwnerCookieMiddleware(BaseHTTPMiddleware):
    """Resolve the caller's owner token from the signed cookie, issuing one if needed.

    The verified token is exposed as ``request.state.owner_token``; a newly
    issued token is also set on the response. A cookie that was sent but failed
    verification is flagged as ``request.state.owner_rejected`` so read-only
    routes can refuse it instead of serving an empty identity.
    """

    def __init__(self, app, logger: logging.Logger = None):
        super().__init__(app)
        self.logger = logger or logging.getLogger("urlshortener.web")

    async def dispatch(self, request: Request, call_next: Callable):
        manager = request.app.state.service_manager
        cookie_name = manager.settings.COOKIE_NAME
        token = request.cookies.get(cookie_name)
        issued = False
        request.state.owner_rejected = False

        if token:
            try:
                manager.secretary.decode(token)
            except InvalidTokenError as exc:
                self.logger.info(f"Rejected owner cookie: {exc}")
                request.state.owner_rejected = True
                token = None
        if not token:
            token = manager.secretary.new_token()
            issued = True

        request.state.owner_token = token
        response = await call_next(request)
        if issued:
            response.set_cookie(cookie_name, token, httponly=True, samesite="lax")
        return response
