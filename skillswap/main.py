from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from skillswap.auth import AuthProvider, build_auth_provider
from skillswap.database import init_db
from skillswap.errors import ServiceError, StoreUnavailableError
from skillswap.realtime import ConnectionRegistry
from skillswap.routes import router, live_router
import logging
import os
import sys

AUTH_PROVIDER = os.getenv("AUTH_PROVIDER", "local")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("skillswap")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.connections = ConnectionRegistry()
    logger.info("SkillSwap messaging service started (auth provider: %s)", app.state.auth_provider.name)
    yield
    await app.state.connections.shutdown()
    logger.info("SkillSwap messaging service stopped")


async def service_error_handler(request: Request, exc: ServiceError):
    content = {"error": exc.error, "detail": exc.detail, "status_code": exc.status_code}
    headers = None
    if exc.status_code == 401:
        content["reauthenticate"] = True
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def store_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("Database unavailable while serving %s: %s", request.url.path, exc)
    return await service_error_handler(request, StoreUnavailableError("Database is unavailable"))


def create_app(auth_provider: AuthProvider = None) -> FastAPI:
    app = FastAPI(
        title="SkillSwap Messaging API",
        description="Conversations, messages and live notifications for skill exchanges",
        version="1.0.0",
        lifespan=lifespan,
    )
    # Chosen once here; request handlers only ever read app.state.auth_provider
    app.state.auth_provider = auth_provider or build_auth_provider(AUTH_PROVIDER)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(OperationalError, store_unavailable_handler)

    app.include_router(router)
    app.include_router(live_router)

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "skillswap-messaging", "authProvider": app.state.auth_provider.name}

    return app


app = create_app()
