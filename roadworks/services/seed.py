import uuid
from sqlalchemy.orm import Session

from roadworks.core.auth import hash_password
from roadworks.models.user import User, UserRole


def seed_users(db: Session):
    # Only seed if no users exist
    if db.query(User).count() > 0:
        return

    users = [
        User(
            id=str(uuid.uuid4()),
            username="operator",
            display_name="Roads Operator",
            department="Road Maintenance",
            role=UserRole.OPERATOR,
            password_hash=hash_password("operator123"),
            is_active=True,
        ),
        User(
            id=str(uuid.uuid4()),
            username="reviewer",
            display_name="Peer Reviewer",
            department="Road Maintenance",
            role=UserRole.REVIEWER,
            password_hash=hash_password("reviewer123"),
            is_active=True,
        ),
        User(
            id=str(uuid.uuid4()),
            username="authority",
            display_name="City Authority",
            department="Public Works",
            role=UserRole.AUTHORITY,
            password_hash=hash_password("authority123"),
            is_active=True,
        ),
        User(
            id=str(uuid.uuid4()),
            username="admin",
            display_name="Admin",
            role=UserRole.ADMIN,
            password_hash=hash_password("admin123"),
            is_active=True,
        ),
    ]

    db.add_all(users)
    db.commit()
