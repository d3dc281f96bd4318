import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rasoi.config import settings
from rasoi.db import Base, engine
from rasoi.middleware import RequestIdMiddleware
from rasoi import models  # noqa: F401  registers the tables on Base.metadata
from rasoi.services.errors import OrderFlowError
from rasoi.routers import admin, auth, coupons, menu, notifications, orders, payments, pricing, riders

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rasoi API", version="0.1.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("rasoi api started (env=%s)", settings.APP_ENV)

@app.exception_handler(OrderFlowError)
async def order_flow_error(request: Request, exc: OrderFlowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(menu.router)
app.include_router(pricing.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(riders.router)
app.include_router(coupons.router)
app.include_router(notifications.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
