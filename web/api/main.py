"""FastAPI app for RoboMania 2025 registrations and payments."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import load_gateway_settings
from robomania.errors import RoboManiaError
from robomania.models.base import init_db
from robomania.services.gateways import build_gateways
from robomania.services.notifications import NotificationDispatcher

from web.api.admin_routes import router as admin_router
from web.api.auth_routes import router as auth_router
from web.api.payment_routes import router as payment_router
from web.api.registration_routes import router as registration_router

logger = logging.getLogger("robomania.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    app.state.notifier.start()
    yield
    await app.state.notifier.stop()


app = FastAPI(title="RoboMania 2025 Registration API", lifespan=lifespan)

app.state.gateway_settings = load_gateway_settings()
app.state.gateways = build_gateways(app.state.gateway_settings)
app.state.notifier = NotificationDispatcher()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoboManiaError)
async def robomania_error_handler(request: Request, exc: RoboManiaError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(registration_router)
app.include_router(payment_router)
app.include_router(admin_router)
app.include_router(auth_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
