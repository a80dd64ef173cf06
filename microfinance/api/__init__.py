"""
Microfinance Loan API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import ConcurrentModification, LoanEngineError, LoanNotFound, RepaymentNotFound
from ..logging_config import get_logger, setup_logging
from .loans import router as loans_router
from .loan_types import router as loan_types_router
from .receipts import router as receipts_router
from .savings import router as savings_router, clients_router


logger = get_logger("api")


def _status_for(error: LoanEngineError) -> int:
    if isinstance(error, (LoanNotFound, RepaymentNotFound)):
        return 404
    if isinstance(error, ConcurrentModification):
        return 409
    return 400


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Microfinance Loan API",
        description="Loan schedules, origination, repayments and interest distribution",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LoanEngineError)
    async def loan_engine_error_handler(request: Request, exc: LoanEngineError):
        return JSONResponse(
            status_code=_status_for(exc),
            content={"detail": exc.message, **exc.to_dict()}
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        detail = str(exc) if get_config().is_development else "Internal server error"
        return JSONResponse(status_code=500, content={"detail": detail})

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(loan_types_router, prefix="/loan-types", tags=["Loan Types"])
    app.include_router(savings_router, prefix="/savings", tags=["Savings"])
    app.include_router(clients_router, prefix="/clients", tags=["Clients"])
    app.include_router(receipts_router, prefix="/receipts", tags=["Receipts"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_loan_api",
            "version": __version__
        }

    return app


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)
    uvicorn.run(
        "microfinance.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level="info"
    )


def main():
    """Console entry point"""
    run_server()
