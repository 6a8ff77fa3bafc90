import sys
from pathlib import Path
import os

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hearth.models import HouseholdSettings, PermissionRule
from app.hearth.rbac import DEFAULT_ROLE_RULES


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the household settings row and default permission rules in an idempotent way.
    Existing rules are never overwritten: an admin's edits survive every release.
    The first admin account is created through POST /bootstrap, not here.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///hearth.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with _session_scope(db_url) as s:
        if s.get(HouseholdSettings, 1) is None:
            s.add(HouseholdSettings(id=1, is_bootstrapped=False))

        seeded = 0
        for role, rules in DEFAULT_ROLE_RULES.items():
            existing = s.scalar(select(func.count()).select_from(PermissionRule).where(PermissionRule.role == role))
            if existing:
                continue
            for rule in rules:
                s.add(
                    PermissionRule(
                        role=role,
                        action_pattern=rule.action_pattern,
                        effect=rule.effect,
                        local_only=rule.local_only,
                    )
                )
                seeded += 1

    print("Initialized database (seed_only).")
    print(f"Default permission rules seeded: {seeded}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
