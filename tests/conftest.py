"""
SL Accounting LMS - test configuration and fixtures.

Beanie runs on mongomock-motor; multi-document transactions are replaced by a
passthrough since the in-memory client has no sessions.
"""
import os
from typing import AsyncGenerator

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient

os.environ["DEBUG"] = "true"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-testing"
os.environ["SESSION_GENERATOR_ENABLED"] = "false"
os.environ["TEXTLK_API_KEY"] = ""
os.environ["ZOOM_ACCOUNT_ID"] = ""
os.environ["PAYHERE_MERCHANT_ID"] = "1211149"
os.environ["PAYHERE_MERCHANT_SECRET"] = "test-merchant-secret"

from beanie import init_beanie  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

from lms import db  # noqa: E402
from lms.api.deps import create_access_token, get_password_hash  # noqa: E402
from lms.main import app  # noqa: E402
from lms.models import DOCUMENT_MODELS  # noqa: E402
from lms.models.lms_class import LmsClass, TimeSchedule  # noqa: E402
from lms.models.user import User, UserRole  # noqa: E402
from lms.services.roles import ensure_default_roles  # noqa: E402

fake = Faker()

TEST_PASSWORD = "testpassword123"


async def _passthrough_transaction(callback):
    return await callback(None)


@pytest.fixture(autouse=True)
async def database(monkeypatch) -> AsyncGenerator[None, None]:
    """Fresh in-memory database per test with the default roles in place."""
    client = AsyncMongoMockClient()
    await init_beanie(database=client["lms_test"], document_models=DOCUMENT_MODELS)
    monkeypatch.setattr(db, "run_in_transaction", _passthrough_transaction)
    await ensure_default_roles()
    yield


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app without running its lifespan."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def make_user(role: UserRole = UserRole.STUDENT, **overrides) -> User:
    user = User(
        email=overrides.pop("email", fake.unique.email()),
        hashed_password=get_password_hash(overrides.pop("password", TEST_PASSWORD)),
        role=role,
        first_name=overrides.pop("first_name", fake.first_name()),
        last_name=overrides.pop("last_name", fake.last_name()),
        phone=overrides.pop("phone", "0771234567"),
        is_verified=True,
        **overrides,
    )
    await user.insert()
    return user


def headers_for(user: User) -> dict:
    token = create_access_token(str(user.id), user.role.value)
    return {"Authorization": f"Bearer {token}"}


async def make_class(name: str = None, **overrides) -> LmsClass:
    name = name or f"{fake.word().title()} Accounting"
    lms_class = LmsClass(
        name=name,
        slug=overrides.pop("slug", f"{name.lower().replace(' ', '-')}-{fake.unique.random_int(1, 10**6)}"),
        price=overrides.pop("price", 3000.0),
        is_published=overrides.pop("is_published", True),
        **overrides,
    )
    await lms_class.insert()
    return lms_class


@pytest.fixture
async def admin_user() -> User:
    return await make_user(UserRole.ADMIN)


@pytest.fixture
async def instructor_user() -> User:
    return await make_user(UserRole.INSTRUCTOR)


@pytest.fixture
async def student_user() -> User:
    return await make_user(UserRole.STUDENT)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def student_headers(student_user: User) -> dict:
    return headers_for(student_user)


@pytest.fixture
async def bundle_classes() -> dict:
    """A theory class linked to a revision and a paper class."""
    revision = await make_class("Revision 2026", price=2000.0)
    paper = await make_class("Paper 2026", price=1500.0)
    theory = await make_class(
        "Theory 2026",
        price=4000.0,
        revision_class_id=str(revision.id),
        paper_class_id=str(paper.id),
        time_schedules=[TimeSchedule(day=6, start_time="08:00", end_time="10:00", timezone="Asia/Colombo")],
    )
    return {"theory": theory, "revision": revision, "paper": paper}
