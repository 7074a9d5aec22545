"""FastAPI application for the Valet Clock web surface"""

import os
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from valetclock.app import ValetClockApp
from valetclock.models.auth import ProvisioningErrorCode
from valetclock.utils.exceptions import (
    AuthorizationError,
    CredentialError,
    DocumentNotFoundError,
    OperationNotAllowedError,
    ProvisioningError,
    StoreError,
)
from valetclock.utils.logger import get_logger
from .admin_routes import router as admin_router
from .auth_routes import router as auth_router
from .clock_routes import router as clock_router

logger = get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProvisioningError)
    async def provisioning_error(request: Request, exc: ProvisioningError):
        code = status.HTTP_409_CONFLICT if exc.code == ProvisioningErrorCode.EMAIL_EXISTS else status.HTTP_400_BAD_REQUEST
        return JSONResponse(status_code=code, content={"error_code": str(getattr(exc.code, "value", exc.code)), "error": str(exc)})

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError):
        reason = getattr(exc.reason, "value", exc.reason)
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"reason": reason, "error": str(exc)})

    @app.exception_handler(OperationNotAllowedError)
    async def operation_not_allowed(request: Request, exc: OperationNotAllowedError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})

    @app.exception_handler(DocumentNotFoundError)
    async def not_found(request: Request, exc: DocumentNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Valet not found"})

    @app.exception_handler(StoreError)
    async def store_unavailable(request: Request, exc: StoreError):
        logger.error("Store error while handling request", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"error": "Storage is temporarily unavailable"})

    @app.exception_handler(CredentialError)
    async def credential_error(request: Request, exc: CredentialError):
        logger.error("Credential provider error while handling request", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"error_code": exc.code, "error": "Sign-in service error"})


def create_app(valet_app: Optional[ValetClockApp] = None) -> FastAPI:
    """
    Build the FastAPI app.

    An already-initialized ValetClockApp may be injected (tests); otherwise
    one is built from settings on startup.
    """
    app = FastAPI(
        title="Valet Clock",
        description="Valet clock-in tracking with account-status enforcement",
        version="1.0.0",
    )

    cors_origins = os.getenv("CORS_ORIGINS")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.valet = valet_app
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(clock_router)
    _register_error_handlers(app)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "ready": app.state.valet is not None}

    @app.on_event("startup")
    async def startup_event():
        if app.state.valet is None:
            app.state.valet = ValetClockApp().initialize()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop every status monitor"""
        if app.state.valet is not None:
            logger.info("Shutdown event triggered - stopping status monitors")
            await app.state.valet.shutdown()

    return app


app = create_app()
