#!/usr/bin/env python3
"""
Seed the default business rules into the database.
Usage: python scripts/seed_rules.py [--list]
"""

import sys

from agentcore.database import SessionLocal, init_db
from agentcore.services.rule_service import list_rules, seed_default_rules


def main():
    init_db()
    db = SessionLocal()
    try:
        counts = seed_default_rules(db)
        db.commit()
        print(f"Rules seeded: {counts['created']} created, {counts['updated']} updated")

        if "--list" in sys.argv[1:]:
            for rule in list_rules(db, active_only=True):
                print(f"  [{rule.priority:>3}] {rule.category:<10} {rule.name}")
    except Exception as exc:
        db.rollback()
        print(f"Seeding failed: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
