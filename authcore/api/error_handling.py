# authcore/api/error_handling.py
from typing import Any, Dict, List

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from authcore.core.exceptions import AuthCoreError, RateLimitExceededError


def error_body(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


async def auth_core_error_handler(request: Request, exc: AuthCoreError) -> JSONResponse:
    headers: Dict[str, str] = {}
    if isinstance(exc, RateLimitExceededError):
        headers.update(exc.result.headers())
    elif exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.wire_code, exc.message, exc.details()),
        headers=headers or None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Agrupa mensagens por campo para o frontend
    fields: Dict[str, List[str]] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        fields.setdefault(field, []).append(error.get("msg", "Invalid value"))
    logger.warning(f"Validação falhou em {request.url.path}: {fields}")
    return JSONResponse(
        status_code=422,
        content=error_body("VALIDATION_ERROR", "Invalid input data", fields),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthCoreError, auth_core_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
