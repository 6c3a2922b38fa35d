import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.v1.router import v1_router
from app.core.config import get_settings
from app.core.errors import ContractError
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware

logger = logging.getLogger(__name__)


def _is_public(request: Request) -> bool:
    return "/public/" in request.url.path


async def contract_error_handler(request: Request, exc: ContractError) -> JSONResponse:
    logger.info(
        "contract_error",
        extra={
            "kind": exc.kind,
            # Route template only: public paths carry live share / sign tokens.
            "route": getattr(request.scope.get("route"), "path", None),
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    # Token holders only ever see the terse message.
    if _is_public(request):
        return JSONResponse(status_code=exc.http_status, content={"detail": exc.public_message})
    return JSONResponse(
        status_code=exc.http_status,
        content={"kind": exc.kind, "message": exc.message, "retryable": exc.retryable},
    )


async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc) or "Forbidden"})


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    app.add_exception_handler(ContractError, contract_error_handler)
    app.add_exception_handler(PermissionError, permission_error_handler)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
