#!/usr/bin/env python3
"""
Create (or promote) a ROLE_ADMIN account. Admins cannot sign up themselves.

Reads from .env:
    ADMIN_EMAIL      admin account email (required)
    ADMIN_PASSWORD   admin account password (required)
    ADMIN_USERNAME   username (optional, defaults to "admin")
    IDENTITY_DATABASE_URL

Usage:
    python scripts/create_admin.py
"""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from ojtech_shared.constants import RoleName
from ojtech_shared.database.postgres import get_async_engine
from sqlalchemy.ext.asyncio import async_sessionmaker

from ojtech_identity.auth import store
from ojtech_identity.auth.models import User
from ojtech_identity.auth.utils import hash_password, normalize_email


async def main() -> None:
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        print("Error: ADMIN_EMAIL and ADMIN_PASSWORD must be set in .env")
        sys.exit(1)
    username = os.getenv("ADMIN_USERNAME", "admin")
    db_url = os.environ["IDENTITY_DATABASE_URL"]

    engine = get_async_engine(db_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with session_factory() as session:
            await store.seed_roles(session)
            admin_role = await store.get_role_by_name(session, RoleName.ADMIN)

            existing = await store.get_user_by_email(session, email)
            if existing is not None:
                print(f"User {email} already exists (id={existing.id}).")
                if RoleName.ADMIN.value in existing.role_names:
                    print("  -> Already an admin. Nothing to do.")
                else:
                    existing.roles = [*existing.roles, admin_role]
                    await store.save_user(session, existing)
                    print("  -> Granted ROLE_ADMIN.")
                await session.commit()
                return

            if await store.username_exists(session, username):
                print(f"Error: username {username!r} is taken; set ADMIN_USERNAME")
                sys.exit(1)

            user = User(
                email=normalize_email(email),
                username=username,
                password_hash=hash_password(password),
                display_name=username,
                roles=[admin_role],
                email_verified=True,
                is_active=True,
            )
            await store.save_user(session, user)
            await session.commit()
            print(f"Admin created: {email} (id={user.id})")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
