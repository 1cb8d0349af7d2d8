"""
Loan Interest API Application Factory
"""

from fastapi import FastAPI
import uvicorn

from .accounts import router as accounts_router
from .interest import router as interest_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Interest API",
        description="Loan accounts with daily interest accrual and month-end compounding",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(interest_router, prefix="/interest", tags=["Interest"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_interest_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_interest.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
