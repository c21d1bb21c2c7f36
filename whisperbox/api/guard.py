"""Middleware applying the route guard to page requests."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..security.route_guard import decide
from .routes import session_token_from


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Redirect between the sign-in and protected pages based on token presence only.

    Only the token signature and expiry are checked; the account store is never consulted.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        service = request.app.state.account_service
        has_valid_token = service.decode_session(session_token_from(request)) is not None
        decision = decide(has_valid_token, request.url.path)
        if not decision.allowed:
            return RedirectResponse(url=decision.redirect_to, status_code=307)
        return await call_next(request)
