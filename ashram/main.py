import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ashram.config import get_settings
from ashram.core.logging import setup_logging
from ashram.database import create_tables
from ashram.limiter import limiter
from ashram.monitoring import timing_middleware
from ashram.responses import register_exception_handlers
from ashram.routers import (
    admin, appointments, auth, checkin, dashboard, health, notifications, queue, remedies, users,
)
from ashram.security import add_security_headers
from ashram.seed import create_initial_data, create_or_update_admin

setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    # OpenAPI is served from the admin-only /api/docs route instead
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.state.limiter = limiter
register_exception_handlers(app)


@app.on_event("startup")
def on_startup():
    create_tables()
    create_initial_data()
    create_or_update_admin()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request, call_next):
    response = await call_next(request)
    return add_security_headers(response)


app.middleware("http")(timing_middleware)

app.include_router(auth.router, prefix="/api")
app.include_router(appointments.router, prefix="/api")
app.include_router(checkin.router, prefix="/api")
app.include_router(queue.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(remedies.router, prefix="/api")
app.include_router(remedies.user_router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(users.patients_router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(health.router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run("ashram.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
