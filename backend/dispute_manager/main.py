import logging
import uuid
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from dispute_manager.routers import (
    auth,
    billing,
    disputes,
    webhooks,
)
from dispute_manager.config import settings
from dispute_manager.services.billing import BillingRequired
from dispute_manager.utils.logger import logger

app = FastAPI(title="Shopify Dispute Manager API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
if settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)

# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(BillingRequired)
async def billing_required_handler(request: Request, exc: BillingRequired):
    logger.info(f"Billing gate redirect for {exc.shop_domain}")
    return RedirectResponse("/app/billing", status_code=status.HTTP_303_SEE_OTHER)


app.include_router(auth.router)
app.include_router(disputes.router)
app.include_router(billing.router)
app.include_router(webhooks.router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}

@app.get("/healthz/db")
async def healthz_db():
    """Database health check endpoint"""
    try:
        from dispute_manager.models_sqlalchemy import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}: {str(e)}"
        )

@app.get("/")
async def root():
    return {
        "message": "Shopify Dispute Manager API",
        "version": "1.0.0",
        "docs": "/docs"
    }
