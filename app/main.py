from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.v1.router import v1_router
from app.core.clock import Clock, utc_now
from app.core.config import get_settings
from app.core.deps import build_services
from app.core.errors import ContractError
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware
from app.services.collaborators import Collaborators, default_collaborators


def create_app(collaborators: Optional[Collaborators] = None, clock: Clock = utc_now) -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    collaborators = collaborators or default_collaborators(settings.document_storage_dir)
    app.state.services = build_services(settings, collaborators, clock=clock)

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    @app.exception_handler(ContractError)
    async def contract_error_handler(request: Request, exc: ContractError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
