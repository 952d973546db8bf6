import pytest
from werkzeug.security import generate_password_hash

from app.docflow import create_app
from app.docflow.db import session_scope
from app.docflow.errors import FingerprintImmutable, HashCollision
from app.docflow.models import Base, User
from app.docflow.modules.documents.models import Document
from app.docflow.modules.documents.service import create_document
from app.docflow.modules.integrity.hashing import HashService, is_valid_digest, normalize_digest
from app.docflow.modules.workflow.service import WorkflowEngine
from app.docflow.storage import LocalStorage

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SIGNATURE_ENCRYPTION_KEY", "11" * 32)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(
            User(
                email="staff@example.com",
                full_name="Staff Member",
                password_hash=generate_password_hash("pw"),
                role="academic_staff",
                is_active=True,
            )
        )
    return app


def _upload(app, tmp_path, data: bytes) -> int:
    with session_scope(app) as s:
        owner = s.query(User).filter(User.email == "staff@example.com").one()
        engine = WorkflowEngine(s, app.extensions["signature_vault"])
        doc, _ = create_document(
            s, engine, LocalStorage(root=tmp_path / "store"), owner=owner, title="Doc", data=data, filename="a.pdf"
        )
        return doc.id


def test_fingerprint_is_lowercase_sha256_hex():
    assert HashService.fingerprint(b"hello") == HELLO_SHA256
    assert HashService.fingerprint(b"") == EMPTY_SHA256


def test_digest_format_checks():
    assert is_valid_digest(HELLO_SHA256)
    assert is_valid_digest(HELLO_SHA256.upper())
    assert is_valid_digest(f"  {HELLO_SHA256}\n")
    assert not is_valid_digest(HELLO_SHA256[:-1])
    assert not is_valid_digest(HELLO_SHA256 + "0")
    assert not is_valid_digest("z" * 64)
    assert not is_valid_digest("")
    assert not is_valid_digest(None)
    assert normalize_digest(f" {HELLO_SHA256.upper()} ") == HELLO_SHA256


def test_find_matches_any_case(app, tmp_path):
    doc_id = _upload(app, tmp_path, b"hello")
    with session_scope(app) as s:
        hs = HashService(s)
        assert hs.find(HELLO_SHA256).id == doc_id
        assert hs.find(HELLO_SHA256.upper()).id == doc_id
        assert hs.find(EMPTY_SHA256) is None
        assert hs.find("not-a-digest") is None

        result = hs.verify(HELLO_SHA256)
        assert result.found is True
        assert result.document.document_id == doc_id
        assert result.document.status == "in_review"
        assert hs.verify(EMPTY_SHA256).found is False


def test_identical_bytes_collide(app, tmp_path):
    _upload(app, tmp_path, b"hello")
    with pytest.raises(HashCollision):
        _upload(app, tmp_path, b"hello")
    with session_scope(app) as s:
        assert s.query(Document).count() == 1


def test_fingerprint_cannot_be_rewritten(app, tmp_path):
    doc_id = _upload(app, tmp_path, b"hello")
    with pytest.raises(FingerprintImmutable):
        with session_scope(app) as s:
            d = s.get(Document, doc_id)
            d.fingerprint = EMPTY_SHA256
    with session_scope(app) as s:
        assert s.get(Document, doc_id).fingerprint == HELLO_SHA256
