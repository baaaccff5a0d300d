"""
Private Lending API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .. import __version__
from ..config import get_config
from .loans import router as loans_router
from .notifications import router as notifications_router
from .dashboard import router as dashboard_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Private Lending API",
        description="Debt-acknowledgment contracts, late-payment penalties and borrower reminders",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_config().cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "private_lending_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8091, debug: bool = False, workers: int = 1):
    """Run the FastAPI server"""
    uvicorn.run(
        "private_lending.api:app",
        host=host,
        port=port,
        reload=debug,
        workers=workers,
        log_level="info"
    )
