"""
Order Ledger API
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from orderledger.core.config import settings
from orderledger.core.database import init_db, SessionLocal
from orderledger.core.exceptions import LedgerError
from orderledger.core.rate_limit import RateLimitMiddleware
from orderledger.api.v1 import auth, clients, orders, invoices, payments, banking, fiscal_year, audit
from orderledger.services.user_service import seed_initial_admin

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("orderledger")

ROUTERS = (auth, clients, orders, invoices, payments, banking, fiscal_year, audit)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    with SessionLocal() as db:
        if seed_initial_admin(db):
            logger.info(f"Seeded super-admin '{settings.INITIAL_ADMIN_USERNAME}'")
    logger.info(
        f"Ledger ready: local currency {settings.LOCAL_CURRENCY}, "
        f"base currency {settings.BASE_CURRENCY}, environment {settings.ENVIRONMENT}"
    )
    yield
    logger.info("Ledger shutting down")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    # Business rule refusals are expected traffic, not server faults
    logger.info(f"{request.method} {request.url.path} refused: {exc.code.value} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred"})


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "local_currency": settings.LOCAL_CURRENCY,
        "base_currency": settings.BASE_CURRENCY,
    }


for module in ROUTERS:
    app.include_router(module.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
