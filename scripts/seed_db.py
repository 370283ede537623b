#!/usr/bin/env python
"""
Database seeding script
Creates the first admin account; every later role change goes through the admin API

Usage:
    ADMIN_EMAIL=admin@immochat.com ADMIN_PASSWORD='...' python scripts/seed_db.py
"""
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from immochat.db import SessionLocal, UserRole, init_db
from immochat.exceptions import Conflict
from immochat.services.identity_service import IdentityResolver
from immochat.services.password_validator import get_password_validator


def seed_admin(email: str, password: str, name: str = "Administrator"):
    """Create an ADMIN user with a password, unless the email is taken"""
    get_password_validator().validate_or_raise(password)

    init_db()
    db = SessionLocal()

    try:
        resolver = IdentityResolver(db)
        try:
            admin = resolver.create_user_as_admin(name=name, email=email, role=UserRole.ADMIN)
        except Conflict:
            print(f"User {email} already exists. Skipping seed.")
            return

        resolver.set_password(admin, password)
        admin.email_verified = True
        db.commit()

        print("Database seeded successfully")
        print(f"  Created admin user: {admin.email} (id {admin.id})")

    except Exception as e:
        print(f"Error seeding database: {e}", file=sys.stderr)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_email or not admin_password:
        print("ADMIN_EMAIL and ADMIN_PASSWORD must be set", file=sys.stderr)
        sys.exit(1)

    seed_admin(admin_email, admin_password, os.getenv("ADMIN_NAME", "Administrator"))
