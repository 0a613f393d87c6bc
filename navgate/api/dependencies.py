"""
Feature route guard dependencies.

FastAPI dependencies that enforce the same decision as the in-process
route guard: granted requests proceed, denied requests are redirected to
the unauthorized page, and requests arriving before the tenant's features
have loaded get a 503 with Retry-After.
"""

import logging
from typing import Callable, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..errors import NavGateError
from ..guards import Loading, Redirect
from ..session import NavigationSession

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


def get_navigation_session(request: Request) -> NavigationSession:
    session = getattr(request.app.state, "navigation_session", None)
    if session is None:
        logger.error("Navigation session not configured", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "NAVIGATION_UNAVAILABLE", "message": "Navigation session not configured"},
        )
    return session


def require_feature(feature_key: str, *, redirect_to: Optional[str] = None) -> Callable:
    """
    Factory that creates a dependency guarding a route by feature key.

    Returns:
        FastAPI dependency that redirects (307) when denied, answers 503
        while loading, else returns the NavigationSession
    """

    async def check_feature(
        request: Request,
        session: NavigationSession = Depends(get_navigation_session),
    ) -> NavigationSession:
        guard = session.route_guard(feature_key, redirect_to=redirect_to)
        result = guard.evaluate(request.url.path, lambda: session)

        if isinstance(result, Loading):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"error": "FEATURE_ACCESS_LOADING", "message": "Feature access is still loading"},
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
        if isinstance(result, Redirect):
            query = urlencode({"from": result.from_path, "feature_key": result.feature_key, "reason": result.reason})
            raise HTTPException(
                status_code=status.HTTP_307_TEMPORARY_REDIRECT,
                detail=result.navigation_state,
                headers={"Location": f"{result.to}?{query}"},
            )
        return result.content

    return check_feature


def register_exception_handlers(app: FastAPI) -> None:
    """Render NavGateError as `{"error": {code, message, details}}`."""

    @app.exception_handler(NavGateError)
    async def handle_navgate_error(request: Request, exc: NavGateError) -> JSONResponse:
        logger.warning(
            "Navigation engine error",
            extra={
                "error_code": exc.error_code,
                "status_code": exc.http_status,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
