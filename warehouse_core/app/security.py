"""
Security Module for the Warehouse Backend
=========================================
- Secret key management
- Password policy and bcrypt hashing
- JWT access tokens
- Role-based access control with fine-grained permissions
- Audit logging
- Login rate limiting
"""

import os
import re
import json
import secrets
import hashlib
import logging
import warnings
from enum import Enum
from datetime import datetime, timedelta
from typing import Optional, List, Set, Tuple, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, ExpiredSignatureError, jwt
import bcrypt
from sqlalchemy.orm import Session

from .db import SessionLocal

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

def get_secret_key() -> str:
    """
    Get secret key from environment with validation.
    A missing key is fatal in production.
    """
    secret = os.getenv("WAREHOUSE_SECRET_KEY")

    if not secret:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "WAREHOUSE_SECRET_KEY environment variable must be set in production! "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
            )
        warnings.warn(
            "Using development secret key. Set WAREHOUSE_SECRET_KEY for production!",
            RuntimeWarning
        )
        # Deterministic so tokens survive hot-reload
        secret = hashlib.sha256(b"warehouse-dev-insecure-key").hexdigest()

    if len(secret) < 32:
        raise RuntimeError("WAREHOUSE_SECRET_KEY must be at least 32 characters")

    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))


# =============================================================================
# PASSWORD SECURITY
# =============================================================================

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


class PasswordPolicy:
    """Password strength validation"""

    @staticmethod
    def validate(password: str) -> Tuple[bool, List[str]]:
        """
        Validate password against security policy.

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if len(password) < MIN_PASSWORD_LENGTH:
            errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if len(password) > MAX_PASSWORD_LENGTH:
            errors.append(f"Password must not exceed {MAX_PASSWORD_LENGTH} characters")

        if not re.search(r'[a-z]', password):
            errors.append("Password must contain at least one lowercase letter")

        if not re.search(r'[A-Z]', password):
            errors.append("Password must contain at least one uppercase letter")

        if not re.search(r'\d', password):
            errors.append("Password must contain at least one digit")

        if not re.search(r'[^A-Za-z0-9]', password):
            errors.append("Password must contain at least one special character")

        common_passwords = {'password', 'password123', '12345678', 'qwerty123'}
        if password.lower() in common_passwords:
            errors.append("Password is too common")

        return len(errors) == 0, errors


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=12)).decode('utf-8')


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# =============================================================================

class Permission:
    """Fine-grained permissions for warehouse operations"""

    # Product catalog
    PRODUCT_VIEW = "product:view"
    PRODUCT_MANAGE = "product:manage"

    # Vendors / customers
    CONTACT_VIEW = "contact:view"
    CONTACT_MANAGE = "contact:manage"

    # Warehouses & locations
    WAREHOUSE_VIEW = "warehouse:view"
    WAREHOUSE_MANAGE = "warehouse:manage"

    # Receipts
    RECEIPT_VIEW = "receipt:view"
    RECEIPT_EDIT = "receipt:edit"
    RECEIPT_VALIDATE = "receipt:validate"  # enter Done

    # Delivery orders
    DELIVERY_VIEW = "delivery:view"
    DELIVERY_EDIT = "delivery:edit"
    DELIVERY_VALIDATE = "delivery:validate"  # enter Validated

    # Manufacturing orders
    MANUFACTURING_VIEW = "manufacturing:view"
    MANUFACTURING_EDIT = "manufacturing:edit"

    # Ledger & reports
    STOCK_VIEW = "stock:view"
    STOCK_ADJUST = "stock:adjust"  # manual corrections
    REPORT_EXPORT = "report:export"


ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    "Inventory Manager": {
        Permission.PRODUCT_VIEW, Permission.PRODUCT_MANAGE,
        Permission.CONTACT_VIEW, Permission.CONTACT_MANAGE,
        Permission.WAREHOUSE_VIEW, Permission.WAREHOUSE_MANAGE,
        Permission.RECEIPT_VIEW, Permission.RECEIPT_EDIT, Permission.RECEIPT_VALIDATE,
        Permission.DELIVERY_VIEW, Permission.DELIVERY_EDIT, Permission.DELIVERY_VALIDATE,
        Permission.MANUFACTURING_VIEW, Permission.MANUFACTURING_EDIT,
        Permission.STOCK_VIEW, Permission.STOCK_ADJUST, Permission.REPORT_EXPORT,
    },

    "Warehouse Staff": {
        Permission.PRODUCT_VIEW,
        Permission.CONTACT_VIEW,
        Permission.WAREHOUSE_VIEW,
        Permission.RECEIPT_VIEW, Permission.RECEIPT_EDIT,
        Permission.DELIVERY_VIEW, Permission.DELIVERY_EDIT,
        Permission.MANUFACTURING_VIEW, Permission.MANUFACTURING_EDIT,
        Permission.STOCK_VIEW,
    },
}


def get_role_permissions(role: str) -> Set[str]:
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(user, permission: str) -> bool:
    return permission in get_role_permissions(user.role)


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

def get_db():
    """Database session dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    """Get current authenticated user from JWT token."""
    from .models import User

    payload = decode_token(token)

    username = payload.get("sub")
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = db.query(User).filter(User.username == username).first()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


def require_permission(*required_permissions: str):
    """Dependency that requires user to have specific permissions."""
    async def permission_checker(current_user=Depends(get_current_user)):
        user_permissions = get_role_permissions(current_user.role)

        missing = set(required_permissions) - user_permissions
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}"
            )

        return current_user

    return permission_checker


# =============================================================================
# AUDIT LOGGING
# =============================================================================

class SecurityAuditLog:
    """Audit trail rows for logins and sensitive operations"""

    @staticmethod
    def log_login_attempt(
        db: Session,
        username: str,
        success: bool,
        ip_address: Optional[str] = None,
        failure_reason: Optional[str] = None
    ):
        from .models import AuditLog

        log = AuditLog(
            entity_type="auth",
            entity_id=0,
            action="login_attempt",
            new_values=json.dumps({
                "username": username,
                "success": success,
                "failure_reason": failure_reason,
            }),
            ip_address=ip_address
        )
        db.add(log)
        db.commit()

        if not success:
            logger.warning("Failed login for %s from %s: %s", username, ip_address, failure_reason)

    @staticmethod
    def log_sensitive_action(
        db: Session,
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: int,
        details: dict,
        ip_address: Optional[str] = None
    ):
        """Log a sensitive operation for audit trail"""
        from .models import AuditLog

        log = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            new_values=json.dumps(details, default=str),
            user_id=user_id,
            ip_address=ip_address
        )
        db.add(log)
        db.commit()


# =============================================================================
# RATE LIMITING
# =============================================================================

class RateLimiter:
    """
    Simple in-memory rate limiter, keyed per client.
    Single-process only.
    """

    _attempts: Dict[str, List[datetime]] = {}

    @classmethod
    def check_rate_limit(
        cls,
        key: str,
        max_attempts: int = 5,
        window_seconds: int = 300
    ) -> Tuple[bool, int]:
        """
        Check if action is rate limited.

        Returns:
            (is_allowed, remaining_attempts)
        """
        now = datetime.utcnow()
        window_start = now - timedelta(seconds=window_seconds)

        recent = [t for t in cls._attempts.get(key, []) if t > window_start]
        if recent:
            cls._attempts[key] = recent
        else:
            cls._attempts.pop(key, None)

        attempts = len(recent)
        if attempts >= max_attempts:
            return False, 0

        return True, max_attempts - attempts

    @classmethod
    def record_attempt(cls, key: str):
        cls._attempts.setdefault(key, []).append(datetime.utcnow())

    @classmethod
    def reset(cls, key: Optional[str] = None):
        if key is None:
            cls._attempts.clear()
        else:
            cls._attempts.pop(key, None)


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def sanitize_input(value):
    """Strip null bytes and surrounding whitespace from user-supplied strings."""
    if not isinstance(value, str) or isinstance(value, Enum):
        return value
    return value.replace('\x00', '').strip()
