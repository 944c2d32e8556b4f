#!/usr/bin/env python3
"""
Task Portal — User Seeder
Provisions an administrator and a handful of collaborators so the portal
can be used without a sign-up flow. Safe to re-run: existing emails are
left untouched.

Usage:
    python scripts/seed_users.py
    python scripts/seed_users.py --collaborators 5 --password ChangeMe123!
    python scripts/seed_users.py --admin-email boss@example.com --domain example.com

Requires the project to be installed (pip install -e .) and DATABASE_URL set.
"""

import asyncio
import argparse
from typing import List, Tuple

from sqlalchemy import select

from auth import AuthService
from database import close_db, get_db_context, init_db
from models import User, UserRole


# ── Configuration ───────────────────────────────────────────

FIRST_NAMES = ["Alex", "Jordan", "Taylor", "Morgan", "Casey", "Riley", "Quinn", "Avery", "Sage", "River"]
LAST_NAMES = ["Chen", "Patel", "Kim", "Santos", "Okafor", "Tanaka", "Silva", "Nguyen", "Rossi", "Park"]


class UserSeeder:
    """Builds the seed roster and inserts the users that are missing"""

    def __init__(self, domain: str, password: str):
        self.domain = domain
        self.password = password

    def roster(self, admin_email: str, collaborators: int) -> List[Tuple[str, str, UserRole]]:
        users = [(admin_email, "Administrator", UserRole.ADMINISTRATOR)]
        for i in range(collaborators):
            first = FIRST_NAMES[i % len(FIRST_NAMES)]
            last = LAST_NAMES[(i // len(FIRST_NAMES)) % len(LAST_NAMES)]
            email = f"{first.lower()}.{last.lower()}@{self.domain}"
            users.append((email, f"{first} {last}", UserRole.COLLABORATOR))
        return users

    async def seed(self, roster: List[Tuple[str, str, UserRole]]) -> Tuple[int, int]:
        created = skipped = 0
        async with get_db_context() as db:
            for email, name, role in roster:
                existing = await db.execute(select(User.id).where(User.email == email))
                if existing.scalar_one_or_none() is not None:
                    skipped += 1
                    continue
                db.add(User(
                    email=email,
                    name=name,
                    role=role,
                    password_hash=AuthService.hash_password(self.password),
                ))
                created += 1
        return created, skipped


# ── CLI ─────────────────────────────────────────────────────

async def run(args) -> None:
    await init_db()
    seeder = UserSeeder(domain=args.domain, password=args.password)
    roster = seeder.roster(args.admin_email or f"admin@{args.domain}", args.collaborators)
    try:
        created, skipped = await seeder.seed(roster)
    finally:
        await close_db()

    print(f"✅ Users seeded: {created} created, {skipped} already present")
    for email, _, role in roster:
        print(f"   {role.value:<14} {email}")


def main():
    parser = argparse.ArgumentParser(description="Task Portal User Seeder")
    parser.add_argument("--collaborators", type=int, default=3, help="Number of collaborators")
    parser.add_argument("--domain", type=str, default="example.com", help="Email domain for seeded users")
    parser.add_argument("--admin-email", type=str, default=None, help="Administrator email")
    parser.add_argument("--password", type=str, default="Password123!", help="Password for every seeded user")
    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
