"""
One-time bootstrap script — creates the first Super Admin user.

Usage:
    python -m authz.scripts.create_admin

You only need this ONCE.  After the first Super Admin exists, every
other user is created through `POST /api/users`.
"""

import asyncio
import getpass
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from authz.core.config import settings
from authz.core.security import MAX_PASSWORD_BYTES, hash_password, password_fits_bcrypt
from authz.models.role import Role
from authz.models.user import User

SUPER_ADMIN_ROLE = "Super Admin"


async def create_admin() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as session:
        # ── Collect input ────────────────────────────────────────────
        print(f"\n🔧  {settings.APP_NAME} — First Super Admin Setup\n")
        email = input("  Email:       ").strip().lower()
        first_name = input("  First name:  ").strip()
        last_name = input("  Last name:   ").strip()
        password = getpass.getpass("  Password:    ")
        confirm = getpass.getpass("  Confirm:     ")

        if password != confirm:
            print("\n❌  Passwords do not match.")
            await engine.dispose()
            return

        if not email or not first_name or not last_name or not password:
            print("\n❌  All fields are required.")
            await engine.dispose()
            return

        if len(password) < 8:
            print("\n❌  Password must be at least 8 characters.")
            await engine.dispose()
            return

        if not password_fits_bcrypt(password):
            print(f"\n❌  Password must be at most {MAX_PASSWORD_BYTES} bytes.")
            await engine.dispose()
            return

        # ── Check for existing user ──────────────────────────────────
        existing = (
            await session.execute(select(User.id).where(User.email == email))
        ).scalar_one_or_none()

        if existing:
            print(f"\n❌  User with email '{email}' already exists.")
            await engine.dispose()
            return

        # ── Find Super Admin role (must be seeded first) ─────────────
        admin_role = (
            await session.execute(
                select(Role)
                .options(selectinload(Role.permissions))
                .where(Role.name == SUPER_ADMIN_ROLE, Role.is_active == True)  # noqa: E712
            )
        ).scalar_one_or_none()

        if admin_role is None:
            print(f"\n❌  '{SUPER_ADMIN_ROLE}' role not found. Start the app once first")
            print("   (or run `python -m authz.rbac.permission_seed`), then re-run this script.")
            await engine.dispose()
            return

        # ── Create the user ──────────────────────────────────────────
        admin_user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            is_email_verified=True,
            roles=[admin_role],
        )
        session.add(admin_user)
        await session.commit()

        print("\n✅  Super Admin created successfully!")
        print(f"    ID:    {admin_user.id}")
        print(f"    Email: {admin_user.email}")
        print(f"    Role:  {SUPER_ADMIN_ROLE}")
        print("\n   You can now log in via POST /api/auth/login\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
