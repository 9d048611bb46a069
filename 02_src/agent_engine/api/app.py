"""FastAPI application setup."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .responses import fail
from .routes import agents, cruise


def create_fastapi_app(application: Application) -> FastAPI:
    """Create and configure FastAPI application around an Application instance."""

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        """Manage application lifespan."""
        # Startup
        await application.start()
        yield
        # Shutdown
        await application.stop()

    fastapi_app = FastAPI(
        title="Agent Engine API",
        description="Cruise control API for liquidity agents",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable CORS
    origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:5174")
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return fail(400, "Invalid request", errors)

    # Include routers
    fastapi_app.include_router(cruise.create_cruise_router(application))
    fastapi_app.include_router(agents.create_agents_router(application))

    return fastapi_app
