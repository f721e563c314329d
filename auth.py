"""
Accounts, bearer sessions and one-shot email tokens.

Passwords are bcrypt hashes. Session, verification and reset tokens are
random URL-safe strings handed to the client once; only their SHA-256
digest is stored.

Profile edits live here too; a replaced profile picture is released from
image storage once the new one is saved.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import bcrypt
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import SESSIONS, TOKENS, USERS, create_document, to_oid, to_public, utcnow
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from schemas import ProfileUpdate, Session, Token, User
from uploads import Uploader, release_blobs

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8
VERIFY_TOKEN_TTL = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash.
        return False


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def public_user(doc: dict) -> dict:
    user = to_public(doc)
    user.pop("password_hash", None)
    return user


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def get_user(db: Database, user_id: str) -> dict:
    user = db[USERS].find_one({"_id": to_oid(user_id, "User")})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def register(db: Database, username: str, email: str, password: str, full_name: str) -> dict:
    username = username.strip().lower()
    email = email.strip().lower()
    _check_password(password)

    existing = db[USERS].find_one({"$or": [{"email": email}, {"username": username}]})
    if existing:
        if existing.get("email") == email:
            raise ConflictError("Email is already in use")
        raise ConflictError("Username is already taken")

    user = User(username=username, email=email, full_name=full_name, password_hash=hash_password(password))
    try:
        user_id = create_document(db, USERS, user)
    except DuplicateKeyError:
        raise ConflictError("Username or email is already in use")
    logger.info("Registered user %s", username)
    return get_user(db, user_id)


def login(db: Database, settings: Settings, login_name: str, password: str) -> Tuple[str, dict]:
    """Check credentials (email or username) and open a session. Returns (token, user)."""
    key = login_name.strip().lower()
    user = db[USERS].find_one({"email": key}) or db[USERS].find_one({"username": key})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthenticationError("Invalid credentials")

    token = generate_token()
    session = Session(
        user_id=str(user["_id"]),
        token_hash=hash_token(token),
        expires_at=utcnow() + timedelta(hours=settings.session_ttl_hours),
    )
    create_document(db, SESSIONS, session)
    return token, public_user(user)


def logout(db: Database, token: str) -> bool:
    result = db[SESSIONS].delete_one({"token_hash": hash_token(token)})
    return result.deleted_count > 0


def resolve_identity(db: Database, token: str) -> Identity:
    session = db[SESSIONS].find_one({"token_hash": hash_token(token)})
    if not session:
        raise AuthenticationError("Invalid or expired token")
    if session["expires_at"] < utcnow():
        db[SESSIONS].delete_one({"_id": session["_id"]})
        raise AuthenticationError("Token expired")

    user = db[USERS].find_one({"_id": to_oid(session["user_id"], "User")}, {"role": 1})
    if not user:
        raise AuthenticationError("User no longer exists")
    return Identity(user_id=str(user["_id"]), role=user.get("role", "user"))


# One-shot tokens

def _issue_token(db: Database, user_id: str, kind: str, ttl: timedelta) -> str:
    db[TOKENS].delete_many({"user_id": user_id, "kind": kind})
    token = generate_token()
    create_document(db, TOKENS, Token(
        user_id=user_id, kind=kind, token_hash=hash_token(token), expires_at=utcnow() + ttl,
    ))
    return token


def _consume_token(db: Database, token: str, kind: str) -> str:
    doc = db[TOKENS].find_one_and_delete({"token_hash": hash_token(token), "kind": kind})
    if not doc or doc["expires_at"] < utcnow():
        raise ValidationError("Invalid or expired token")
    return doc["user_id"]


def issue_verification(db: Database, user_id: str) -> str:
    return _issue_token(db, user_id, "verify", VERIFY_TOKEN_TTL)


def verify_email(db: Database, token: str) -> dict:
    user_id = _consume_token(db, token, "verify")
    user = db[USERS].find_one_and_update(
        {"_id": to_oid(user_id, "User")},
        {"$set": {"verified": True, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def request_verification_resend(db: Database, email: str) -> Optional[Tuple[dict, str]]:
    """Replace a user's verification token. None for unknown addresses, like password resets."""
    user = db[USERS].find_one({"email": email.strip().lower()})
    if not user:
        return None
    if user.get("verified"):
        raise ValidationError("This account is already verified. Please sign in.")
    return public_user(user), issue_verification(db, str(user["_id"]))


def request_password_reset(db: Database, email: str) -> Optional[Tuple[dict, str]]:
    """Issue a reset token. Returns None for unknown addresses so callers can answer uniformly."""
    user = db[USERS].find_one({"email": email.strip().lower()})
    if not user:
        return None
    return public_user(user), _issue_token(db, str(user["_id"]), "reset", RESET_TOKEN_TTL)


def _set_password(db: Database, user_id: str, new_password: str) -> None:
    db[USERS].update_one(
        {"_id": to_oid(user_id, "User")},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )


def reset_password(db: Database, token: str, new_password: str) -> None:
    _check_password(new_password)
    user_id = _consume_token(db, token, "reset")
    _set_password(db, user_id, new_password)
    # Existing sessions may belong to whoever lost the password.
    db[SESSIONS].delete_many({"user_id": user_id})


def change_password(db: Database, identity: Identity, current_password: str, new_password: str) -> None:
    user = db[USERS].find_one({"_id": to_oid(identity.user_id, "User")})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(current_password, user.get("password_hash", "")):
        raise AuthenticationError("Current password is incorrect")
    _check_password(new_password)
    _set_password(db, identity.user_id, new_password)


# Profile

def update_profile(db: Database, identity: Identity, payload: ProfileUpdate) -> dict:
    data = payload.model_dump(exclude_unset=True)
    changes: Dict[str, Any] = {}
    removals: Dict[str, str] = {}

    if data.get("full_name"):
        changes["full_name"] = data["full_name"]
    for key in ("title", "bio", "location"):
        if data.get(key) is not None:
            changes[key] = data[key]
    for network, url in (data.get("social_accounts") or {}).items():
        if url is None:
            continue
        if url:
            changes[f"social_accounts.{network}"] = url
        else:
            removals[f"social_accounts.{network}"] = ""

    changes["updated_at"] = utcnow()
    update: Dict[str, Any] = {"$set": changes}
    if removals:
        update["$unset"] = removals
    user = db[USERS].find_one_and_update(
        {"_id": to_oid(identity.user_id, "User")}, update, return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def _swap_profile_picture(db: Database, identity: Identity, image: Optional[dict],
                          uploader: Optional[Uploader]) -> dict:
    if image is None:
        update = {"$unset": {"profile_picture": ""}, "$set": {"updated_at": utcnow()}}
    else:
        update = {"$set": {"profile_picture": image, "updated_at": utcnow()}}
    before = db[USERS].find_one_and_update(
        {"_id": to_oid(identity.user_id, "User")}, update, return_document=ReturnDocument.BEFORE,
    )
    if not before:
        raise NotFoundError("User not found")

    old_id = (before.get("profile_picture") or {}).get("public_id")
    if old_id and old_id != (image or {}).get("public_id"):
        release_blobs(uploader, [old_id])
    return get_user(db, identity.user_id)


def set_profile_picture(db: Database, identity: Identity, image: dict,
                        uploader: Optional[Uploader] = None) -> dict:
    """Store ``image`` ({url, public_id}) as the profile picture and release the one it replaces."""
    return _swap_profile_picture(db, identity, image, uploader)


def clear_profile_picture(db: Database, identity: Identity, uploader: Optional[Uploader] = None) -> dict:
    return _swap_profile_picture(db, identity, None, uploader)
