import logging

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db.session import get_sessionmaker
from app.models.branch import Branch
from app.models.enums import UserRole
from app.models.user import User
from app.services.auth_service import create_user

logger = logging.getLogger(__name__)

BRANCHES = [
    {"code": "JED", "name": "جدة", "address": "جدة، المملكة العربية السعودية"},
    {"code": "MEC", "name": "مكة", "address": "مكة المكرمة، المملكة العربية السعودية"},
    {"code": "AHS", "name": "الأحساء", "address": "الأحساء، المملكة العربية السعودية"},
    {"code": "HAL", "name": "حلي", "address": "حلي، المملكة العربية السعودية"},
]


def seed_branches(db: Session) -> List[Branch]:
    """Insert the four branches if missing. Idempotent."""
    existing = {b.code: b for b in db.execute(select(Branch)).scalars().all()}
    for row in BRANCHES:
        if row["code"] not in existing:
            branch = Branch(**row)
            db.add(branch)
            existing[row["code"]] = branch
    db.flush()
    return [existing[row["code"]] for row in BRANCHES]


def seed_admin(db: Session, branch: Branch) -> User:
    settings = get_settings()
    admin = db.execute(
        select(User).where(User.email == settings.seed_admin_email)
    ).scalar_one_or_none()
    if admin:
        return admin
    admin = create_user(
        db,
        email=settings.seed_admin_email,
        password=settings.seed_admin_password,
        role=UserRole.admin.value,
        branch_id=branch.id,
    )
    logger.warning("default admin created", extra={"email": admin.email})
    return admin


def seed():
    db: Session = get_sessionmaker()()
    try:
        branches = seed_branches(db)
        seed_admin(db, branches[0])
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging(get_settings())
    seed()
