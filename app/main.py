from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import generation, lessons, traces
from app.config import get_settings
from app.core.exceptions import generation_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware
from app.services.generation import GenerationError

__version__ = "0.1.0"


def create_app() -> FastAPI:
  """Build the FastAPI application with routes, handlers and middleware."""
  settings = get_settings()
  application = FastAPI(title="Lesson Forge", version=__version__, lifespan=lifespan, docs_url="/docs" if settings.debug else None, redoc_url=None)

  application.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["content-type", "authorization", "x-session-id"],
    expose_headers=["content-length", "x-request-id", "x-render-state"],
  )

  application.add_exception_handler(Exception, global_exception_handler)
  application.add_exception_handler(HTTPException, http_exception_handler)
  application.add_exception_handler(GenerationError, generation_exception_handler)
  application.add_exception_handler(RequestValidationError, request_validation_exception_handler)

  application.add_middleware(RequestLoggingMiddleware)

  @application.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    """Return a simple health status."""
    return {"status": "ok", "version": __version__}

  application.include_router(lessons.router, prefix="/v1/lessons", tags=["lessons"])
  application.include_router(traces.router, prefix="/v1/traces", tags=["traces"])
  application.include_router(generation.router, prefix="/internal", tags=["generation"])
  return application


app = create_app()
