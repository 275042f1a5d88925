"""
Database seeding script for development users.

Creates one user per role (ADMIN, PATIENT, DOCTOR, DONOR, NGO).
Run this script after the database is reachable:

    python -m healthpal.seed_users
"""

import asyncio

from sqlalchemy import select

from healthpal.app.core.config import settings
from healthpal.app.core.security import get_password_hash
from healthpal.app.db.session import Database
from healthpal.app.models.enums import UserRole
from healthpal.app.models.user import User

# Register the remaining tables so create_all builds the whole schema
from healthpal.app.models.audit_log import AuditLog  # noqa: F401
from healthpal.app.models.sponsorship import Sponsorship  # noqa: F401
from healthpal.app.models.transaction import Transaction  # noqa: F401
from healthpal.app.models.consultation import Consultation  # noqa: F401
from healthpal.app.models.call import Call  # noqa: F401
from healthpal.app.models.notification import Notification  # noqa: F401
from healthpal.app.models.dlq import DeadLetterQueue  # noqa: F401

SEED_USERS = [
    ("Platform Admin", "admin@healthpal.io", "admin123", UserRole.ADMIN),
    ("Layla Patient", "patient@healthpal.io", "patient123", UserRole.PATIENT),
    ("Omar Doctor", "doctor@healthpal.io", "doctor123", UserRole.DOCTOR),
    ("Sara Donor", "donor@healthpal.io", "donor123", UserRole.DONOR),
    ("Relief NGO", "ngo@healthpal.io", "ngo123", UserRole.NGO),
]


async def seed_users(database: Database) -> int:
    """
    Seed one user per role; existing emails are skipped.

    Returns:
        Number of users created
    """
    await database.create_all()
    created = 0

    async with database.session() as db:
        print("🌱 Starting user seeding...")

        for full_name, email, password, role in SEED_USERS:
            result = await db.execute(select(User).where(User.email == email))
            if result.scalar_one_or_none():
                print(f"ℹ️  {role.value} user {email} already exists, skipping")
                continue

            db.add(User(
                full_name=full_name,
                email=email,
                hashed_password=get_password_hash(password),
                role=role,
                is_active=True,
            ))
            created += 1
            print(f"✅ Created {role.value.upper()} user ({email} / {password})")

        await db.commit()

    print(f"\n🎉 User seeding completed ({created} created)")
    return created


async def main():
    database = Database.from_settings(settings)
    try:
        await seed_users(database)
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
