#!/usr/bin/env python
"""
Apply or inspect the auth schema migrations

Usage:
    python migrate_db.py                       # upgrade to head
    python migrate_db.py upgrade
    python migrate_db.py downgrade [revision]  # default: one step back
    python migrate_db.py current
"""
import sys

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

ALEMBIC_INI = "alembic.ini"


def upgrade_db():
    print("Upgrading schema to head...")
    command.upgrade(Config(ALEMBIC_INI), "head")
    print("Schema is up to date")


def downgrade_db(revision: str = "-1"):
    print(f"Downgrading schema to {revision}...")
    command.downgrade(Config(ALEMBIC_INI), revision)
    print("Downgrade finished")


def show_current_revision():
    from immochat.db.engine import engine

    head = ScriptDirectory.from_config(Config(ALEMBIC_INI)).get_current_head()
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()

    print(f"Database revision: {current or 'none (run upgrade first)'}")
    print(f"Head revision:     {head}")


if __name__ == "__main__":
    action = sys.argv[1] if len(sys.argv) > 1 else "upgrade"

    if action == "upgrade":
        upgrade_db()
    elif action == "downgrade":
        downgrade_db(sys.argv[2] if len(sys.argv) > 2 else "-1")
    elif action == "current":
        show_current_revision()
    else:
        print(__doc__)
        sys.exit(2)
