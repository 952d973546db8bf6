from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.docflow.constants import DEFAULT_TEMPLATES
from app.docflow.models import Base, User
from app.docflow.modules.documents.models import DocumentTemplate
from scripts import init_db


def test_seed_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first")

    init_db.seed_only(database_url=db_url)
    monkeypatch.setenv("ADMIN_PASSWORD", "second")
    init_db.seed_only(database_url=db_url)

    with Session(engine) as s:
        admin = s.query(User).one()
        assert admin.email == "root@example.com"
        assert admin.role == "admin"
        # An existing password is never overwritten.
        assert check_password_hash(admin.password_hash, "first")

        templates = s.query(DocumentTemplate).order_by(DocumentTemplate.id).all()
        assert [t.name for t in templates] == [t["name"] for t in DEFAULT_TEMPLATES]
        assert all(t.is_active for t in templates)
        assert templates[-1].approval_path == ["academic_staff", "dean", "vice_chancellor", "assistant_registrar"]
    engine.dispose()
