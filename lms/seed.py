"""Seed the default admin user if not present."""
import logging

from lms.api.deps import get_password_hash
from lms.config import settings
from lms.models.user import User, UserRole

logger = logging.getLogger(__name__)

ADMIN_FIRST_NAME = "SL Accounting"
ADMIN_LAST_NAME = "Admin"


async def seed_admin():
    email = settings.admin_email.strip().lower()
    existing = await User.find_one({"email": email})
    if existing:
        return
    await User(
        email=email,
        hashed_password=get_password_hash(settings.admin_password),
        role=UserRole.ADMIN,
        first_name=ADMIN_FIRST_NAME,
        last_name=ADMIN_LAST_NAME,
        is_verified=True,
    ).insert()
    logger.info("Seeded admin user %s", email)
