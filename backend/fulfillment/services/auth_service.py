# Overview: Service-layer operations for user accounts and password checks.

"""
Authentication Service with Merchant Tenancy

WHY: Every status change and stock movement must be attributable to a user.
Uses bcrypt for password hashing and validates password strength.

MULTI-TENANT: Merchant admins and staff must belong to a merchant.
Platform admins and warehouse staff must not.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Merchant
from ..models.auth import ROLES, MERCHANT_ROLES
from ..validation import ValidationError, ConflictError
from fulfillment.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is constant-time. Malformed hashes verify as False.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str,
    merchant_id: int | None = None,
    *,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: unknown role, weak password, or merchant/role mismatch
        ConflictError: username or email already taken
    """
    if role not in ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(ROLES)}")

    if role in MERCHANT_ROLES:
        if merchant_id is None:
            raise ValidationError(f"{role} users must belong to a merchant")
        merchant = db.session.query(Merchant).get(merchant_id)
        if merchant is None:
            raise ValidationError(f"Merchant {merchant_id} not found")
    elif merchant_id is not None:
        raise ValidationError(f"{role} users cannot belong to a merchant")

    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError(f"Username '{username}' already exists")
    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError(f"Email '{email}' already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        merchant_id=merchant_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns the User on success, None on bad credentials, inactive user,
    or inactive merchant.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier)
    ).first()

    if not user or not user.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    if user.merchant is not None and not user.merchant.is_active:
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
