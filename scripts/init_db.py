import os
import sys
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.docflow.constants import DEFAULT_TEMPLATES
from app.docflow.db import build_engine, build_sessionmaker, scoped
from app.docflow.models import User
from app.docflow.modules.documents.models import DocumentTemplate


def seed_templates(s: Session) -> int:
    """Insert the default approval templates that are missing (matched by name)."""
    existing = set(s.scalars(select(DocumentTemplate.name)).all())
    added = 0
    for tpl in DEFAULT_TEMPLATES:
        if tpl["name"] in existing:
            continue
        s.add(
            DocumentTemplate(
                name=tpl["name"],
                doc_type=tpl["doc_type"],
                description=tpl["description"],
                approval_path=list(tpl["approval_path"]),
                is_active=True,
            )
        )
        added += 1
    return added


def seed_admin(s: Session, *, email: str, password: str, full_name: str = "System Administrator") -> User:
    """
    Create the admin account if missing.
    Does NOT overwrite an existing user's password.
    """
    user = s.scalars(select(User).where(User.email == email)).one_or_none()
    if not user:
        user = User(
            email=email,
            full_name=full_name,
            password_hash=generate_password_hash(password),
            role="admin",
            is_active=True,
        )
        s.add(user)
    elif user.role != "admin":
        user.role = "admin"
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user and default templates in an idempotent way.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@docflow.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///docflow.db").strip()

    # Direct engine/session so release can seed without building the Flask app.
    engine = build_engine(db_url)
    try:
        with scoped(build_sessionmaker(engine)) as s:
            seed_admin(s, email=admin_email, password=admin_password)
            added = seed_templates(s)
    finally:
        engine.dispose()

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Templates added: {added}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
