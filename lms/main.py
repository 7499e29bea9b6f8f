"""SL Accounting LMS - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ServerSelectionTimeoutError

from lms.config import settings
from lms.db import db_shutdown, init_db
from lms.seed import seed_admin
from lms.services.roles import ensure_default_roles
from lms.services.session_generator import session_generator
from lms.api import (
    announcements,
    attendance,
    auth,
    batches,
    chats,
    classes,
    contacts,
    dashboard,
    enrollments,
    knowledge,
    materials,
    payments,
    realtime,
    roles,
    sessions,
    tickets,
    users,
)
from lms.api.deps import require_module_permission

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
        await ensure_default_roles()
        await seed_admin()
    except ServerSelectionTimeoutError as e:
        logger.error("MongoDB is not reachable at %s", settings.mongodb_url)
        raise RuntimeError("MongoDB connection failed. Start MongoDB (e.g. docker compose up -d).") from e
    if settings.session_generator_enabled:
        await session_generator.start()
    yield
    await session_generator.stop()
    await db_shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Live-class LMS: bundle enrollments, PayHere payments, Zoom sessions and chat",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _module(name: str):
    return [Depends(require_module_permission(name))]


# Unauthenticated routes
app.include_router(auth.router, prefix=f"{API_PREFIX}/auth", tags=["Auth"])
app.include_router(payments.public_router, prefix=f"{API_PREFIX}/payments", tags=["Payments"])
app.include_router(batches.public_router, prefix=f"{API_PREFIX}/batches", tags=["Batches"])
app.include_router(sessions.public_router, prefix=f"{API_PREFIX}/sessions", tags=["Sessions"])
app.include_router(contacts.public_router, prefix=f"{API_PREFIX}/contacts", tags=["Contact"])
app.include_router(realtime.router, prefix=API_PREFIX)

# RBAC-protected routes
app.include_router(users.router, prefix=f"{API_PREFIX}/users", tags=["Users"], dependencies=_module("users"))
app.include_router(roles.router, prefix=f"{API_PREFIX}/roles", tags=["Roles & Permissions"], dependencies=_module("roles_permissions"))
app.include_router(classes.router, prefix=f"{API_PREFIX}/classes", tags=["Classes"], dependencies=_module("classes"))
app.include_router(sessions.router, prefix=f"{API_PREFIX}/sessions", tags=["Sessions"], dependencies=_module("sessions"))
app.include_router(attendance.router, prefix=f"{API_PREFIX}/attendance", tags=["Attendance"], dependencies=_module("attendance"))
app.include_router(enrollments.router, prefix=f"{API_PREFIX}/enrollments", tags=["Enrollments"], dependencies=_module("enrollments"))
app.include_router(payments.router, prefix=f"{API_PREFIX}/payments", tags=["Payments"], dependencies=_module("payments"))
app.include_router(batches.router, prefix=f"{API_PREFIX}/batches", tags=["Batches"], dependencies=_module("batches"))
app.include_router(tickets.router, prefix=f"{API_PREFIX}/tickets", tags=["Tickets"], dependencies=_module("tickets"))
app.include_router(chats.router, prefix=f"{API_PREFIX}/chats", tags=["Chats"], dependencies=_module("chats"))
app.include_router(knowledge.router, prefix=f"{API_PREFIX}/knowledge", tags=["Knowledge Base"], dependencies=_module("knowledge"))
app.include_router(materials.router, prefix=f"{API_PREFIX}/materials", tags=["Materials"], dependencies=_module("materials"))
app.include_router(announcements.router, prefix=f"{API_PREFIX}/announcements", tags=["Announcements"], dependencies=_module("announcements"))
app.include_router(dashboard.router, prefix=f"{API_PREFIX}/dashboard", tags=["Dashboard"], dependencies=_module("dashboard"))
app.include_router(contacts.router, prefix=f"{API_PREFIX}/contacts", tags=["Contact"], dependencies=_module("contacts"))


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name}
