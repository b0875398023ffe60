import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt # type: ignore
from passlib.context import CryptContext # type: ignore

from core.config import settings
from database import paths
from database.store import DocumentStore, eq
from schemas.auth import SignupRequest, UserProfile
from services.measurement_service import now_ms

# Use PBKDF2 for MVP stability and portability (no native bcrypt dependency issues on some platforms).
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class EmailTakenError(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(sub: str, role: str, email: str) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload: dict[str, Any] = {"sub": sub, "role": role, "email": email, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def normalize_email(email: str) -> str:
    return email.lower().strip()


def find_user_by_email(store: DocumentStore, email: str) -> dict[str, Any] | None:
    docs = store.query(paths.USERS, [eq("email", normalize_email(email))], limit=1)
    return docs[0] if docs else None


def get_user(store: DocumentStore, uid: str) -> dict[str, Any] | None:
    doc = store.get(paths.USERS, uid)
    if doc is None:
        return None
    return {**doc, "uid": uid}


def create_user(store: DocumentStore, payload: SignupRequest, uid: str | None = None) -> UserProfile:
    if find_user_by_email(store, payload.email):
        raise EmailTakenError(payload.email)
    uid = uid or uuid.uuid4().hex
    doc = {
        "uid": uid,
        "email": normalize_email(payload.email),
        "display_name": payload.display_name,
        "role": payload.role,
        "created_at": now_ms(),
        "hashed_password": hash_password(payload.password),
    }
    store.set(paths.USERS, uid, doc)
    return to_profile(doc)


def authenticate(store: DocumentStore, email: str, password: str) -> dict[str, Any] | None:
    user = find_user_by_email(store, email)
    if not user or not verify_password(password, user["hashed_password"]):
        return None
    return {**user, "uid": user["id"]}


def to_profile(doc: dict[str, Any]) -> UserProfile:
    return UserProfile(
        uid=str(doc.get("uid") or doc["id"]),
        email=doc["email"],
        display_name=doc["display_name"],
        role=doc["role"],
        created_at=int(doc["created_at"]),
        assigned_physio_id=doc.get("assigned_physio_id"),
    )
