# Overview: Device session tokens that carry tenant, branch, employee and role.

"""
Device Session Service

WHY: Offline operations never say who they belong to. The tenant, branch,
employee and role are pinned to the device's session when the token is
issued, and every sync request inherits them from here.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute expiry (DEVICE_SESSION_TTL_HOURS)
- Revocable
- Tenant context is immutable for the session lifetime
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import DeviceSession, Organization, Store
from app.time_utils import utcnow


DEFAULT_TTL_HOURS = 24


class SessionError(Exception):
    """Raised when a device session cannot be issued."""
    pass


@dataclass
class DeviceContext:
    """Tenant context resolved from a valid device token."""
    session: DeviceSession
    org_id: int
    store_id: int
    employee_id: int
    actor_role: str


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token handed to the device (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_device_session(
    org_id: int,
    store_id: int,
    employee_id: int,
    actor_role: str,
    *,
    label: str | None = None,
    ttl_hours: int | None = None,
) -> tuple[DeviceSession, str]:
    """
    Issue a device token bound to one branch and one employee.

    Returns (session_record, plaintext_token).

    Raises SessionError if the organization is inactive or the store is not
    one of its branches.
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org or not org.is_active:
        raise SessionError("Organization is not active")

    store = db.session.query(Store).filter_by(id=store_id, org_id=org_id).first()
    if not store:
        raise SessionError("Store does not belong to organization")

    if not actor_role or not actor_role.strip():
        raise SessionError("actor_role is required")

    plaintext_token = generate_token()
    now = utcnow()
    session = DeviceSession(
        org_id=org_id,
        store_id=store_id,
        employee_id=employee_id,
        actor_role=actor_role.strip(),
        token_hash=hash_token(plaintext_token),
        label=label,
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours or DEFAULT_TTL_HOURS),
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> DeviceContext | None:
    """
    Resolve a plaintext token to its tenant context.

    Returns None for unknown, revoked or expired tokens, and for tokens whose
    organization has been deactivated. Touches last_used_at on success.
    """
    if not token:
        return None

    session = db.session.query(DeviceSession).filter_by(token_hash=hash_token(token)).first()
    if not session or session.revoked_at is not None:
        return None

    now = utcnow()
    if now > session.expires_at:
        return None

    org = db.session.query(Organization).filter_by(id=session.org_id).first()
    if not org or not org.is_active:
        return None

    session.last_used_at = now
    db.session.commit()

    return DeviceContext(
        session=session,
        org_id=session.org_id,
        store_id=session.store_id,
        employee_id=session.employee_id,
        actor_role=session.actor_role,
    )


def revoke_session(token: str) -> bool:
    """Revoke a device token. Returns False if the token is unknown."""
    session = db.session.query(DeviceSession).filter_by(token_hash=hash_token(token)).first()
    if not session:
        return False
    if session.revoked_at is None:
        session.revoked_at = utcnow()
        db.session.commit()
    return True
