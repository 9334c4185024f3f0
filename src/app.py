from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.logging.request_logging import RequestLoggingMiddleware
from src.api.router import auth, health, wallet
from src.core.dependencies import AuthRuntime, build_auth_runtime, build_session_storage
from src.core.exceptions.handler import GlobalErrorHandler, ServiceError
from src.core.logger.logger import logger
from src.infra.config.settings import settings


def create_app(runtime: Optional[AuthRuntime] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="""
DeFi Staking session gateway - wallet and email authentication for the staking dashboard.

## Flow
- **Wallet**: connect a wallet for immediate wallet-only access
- **Account**: create an email account or sign in, linked to the connected wallet by signature
- **Session**: persisted for 24 hours and silently restored after verifying the live wallet
        """,
        version=settings.APP_VERSION,
        docs_url="/",
        redoc_url="/redoc"
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,  # 10 minutes
    )

    app.add_middleware(RequestLoggingMiddleware)

    # Add centralized error handlers
    app.add_exception_handler(ServiceError, GlobalErrorHandler.service_error_handler)
    app.add_exception_handler(RequestValidationError, GlobalErrorHandler.validation_error_handler)
    app.add_exception_handler(Exception, GlobalErrorHandler.general_exception_handler)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(wallet.router, prefix="/api/v1")

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "Starting session gateway",
            extra={
                "started_at": datetime.utcnow().isoformat() + "Z",
                "service": settings.APP_NAME,
                "version": settings.APP_VERSION
            }
        )

        app.state.auth = runtime or build_auth_runtime(await build_session_storage())

        # Silent restoration runs before any auth prompt is served
        session = await app.state.auth.controller.restore()
        logger.info(
            "Session restoration finished",
            extra={
                "state": app.state.auth.controller.state.value,
                "address": session.address if session else None
            }
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info(
            "Shutting down session gateway",
            extra={"service": settings.APP_NAME, "version": settings.APP_VERSION}
        )
        await app.state.auth.aclose()

    return app
