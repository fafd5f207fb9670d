"""
HTTP rendering of domain errors
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from moxmuse.services.errors import DomainError


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a DomainError with its user-facing fields only"""
    logger.warning(
        f"{request.method} {request.url.path} -> {exc.status_code} "
        f"[{exc.kind.value}] {exc.message}"
    )
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers = {"Retry-After": str(int(retry_after) or 1)}
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the DomainError handler on an app"""
    app.add_exception_handler(DomainError, domain_error_handler)
