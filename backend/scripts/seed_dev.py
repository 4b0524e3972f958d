"""
Seed script for local dev: the super-admin account, one regular user, and a few
denylist entries (the EICAR test file among them, so scanning it short-circuits locally).
Run from backend/: python scripts/seed_dev.py
"""
import asyncio
import os

from sqlalchemy import select

# Add parent to path so hashwatch is importable
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hashwatch.core.config import get_settings
from hashwatch.core.security import hash_password
from hashwatch.db.models import User
from hashwatch.db.session import async_session_factory, init_db
from hashwatch.services.denylist import Denylist

settings = get_settings()

SEED_HASHES = [
    # EICAR standard anti-virus test file
    ("275a021bbfb6489e54d471899f7db9d1663fc695ec2fe2a2c4538aabf651fd0f", "EICAR test file", "seed"),
]


async def seed():
    await init_db()

    async with async_session_factory() as db:
        r = await db.execute(select(User).where(User.email == settings.super_admin_email))
        if r.scalar_one_or_none():
            print("Already seeded. Skip.")
            return

        pw = hash_password("admin12345")
        db.add_all([
            User(email=settings.super_admin_email, password_hash=pw),
            User(email="user@example.com", password_hash=pw),
        ])
        await db.flush()

        denylist = Denylist(db)
        for fingerprint, description, source in SEED_HASHES:
            await denylist.upsert(fingerprint, description=description, source=source)
        await db.commit()
    print(f"Seed done. Users: {settings.super_admin_email} / user@example.com, password: admin12345")


if __name__ == "__main__":
    asyncio.run(seed())
