from __future__ import annotations

import base64
import re

from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.docflow.constants import ROLES
from app.docflow.errors import DuplicateAccount, InvalidInput, NotFound
from app.docflow.models import User
from app.docflow.modules.integrity.vault import SignatureVault

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MIN_PASSWORD_LENGTH = 8
MAX_SIGNATURE_BYTES = 2 * 1024 * 1024


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def user_to_dict(u: User, vault: SignatureVault | None = None) -> dict:
    out = {
        "id": u.id,
        "email": u.email,
        "fullName": u.full_name,
        "role": u.role,
        "isActive": u.is_active,
        "hasSignature": u.signature is not None,
    }
    if vault is not None:
        out["signature"] = vault.decrypt(u.signature)
    return out


def get_user(s: Session, user_id: int) -> User:
    u = s.get(User, user_id)
    if u is None:
        raise NotFound(f"User {user_id} not found.")
    return u


def list_users(s: Session) -> list[User]:
    return list(s.scalars(select(User).order_by(User.email.asc())).all())


def create_user(s: Session, *, email: object, password: object, full_name: object, role: object) -> User:
    """
    Create an active account with exactly one role.

    Email is normalised to lower case and must be unique; the password is
    stored as a werkzeug hash.
    """
    for name, value in (("email", email), ("password", password), ("fullName", full_name), ("role", role)):
        if not isinstance(value, str):
            raise InvalidInput(f"{name} is required and must be a string.", field=name)

    email = email.strip().lower()
    full_name = full_name.strip()
    role = role.strip().lower()
    if not is_valid_email(email):
        raise InvalidInput("Invalid email format.", field="email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", field="password")
    if not full_name:
        raise InvalidInput("Full name is required.", field="fullName")
    if role not in ROLES:
        raise InvalidInput(f"Unknown role: {role!r}.", field="role")
    if s.scalars(select(User.id).where(User.email == email)).first() is not None:
        raise DuplicateAccount("An account with this email already exists.")

    u = User(
        email=email,
        full_name=full_name,
        password_hash=generate_password_hash(password),
        role=role,
        is_active=True,
    )
    s.add(u)
    s.flush()
    return u


def set_active(user: User, active: bool, *, actor: User) -> User:
    if user.id == actor.id:
        raise InvalidInput("You cannot change the status of your own account.")
    user.is_active = active
    return user


def signature_data_url(data: bytes, mimetype: str | None) -> str:
    mimetype = (mimetype or "").lower()
    if not mimetype.startswith("image/"):
        raise InvalidInput("Only image files are allowed.", field="signature")
    if not data:
        raise InvalidInput("Signature file is empty.", field="signature")
    if len(data) > MAX_SIGNATURE_BYTES:
        raise InvalidInput("Signature file is too large.", field="signature")
    return f"data:{mimetype};base64,{base64.b64encode(data).decode('ascii')}"


def store_signature(user: User, vault: SignatureVault, data: bytes, mimetype: str | None) -> User:
    # data:image/... payloads are always sealed by the vault.
    user.signature = vault.encrypt(signature_data_url(data, mimetype))
    return user
