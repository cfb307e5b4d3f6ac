import enum
import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import redis
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .database import get_db
from .errors import AuthenticationError, AuthorizationError, RateLimitError

security_logger = logging.getLogger("security")

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=4,
    argon2__memory_cost=65536,
    argon2__parallelism=1,
)

SESSION_COOKIE_NAME = "ashram_session"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/token", auto_error=False)


# ==================== ROLE POLICY ====================

class Capability(str, enum.Enum):
    BOOK_APPOINTMENT = "appointment:book"
    MANAGE_APPOINTMENTS = "appointment:manage"
    MANUAL_CHECKIN = "checkin:manual"
    MANAGE_QUEUE = "queue:manage"
    VIEW_QUEUES = "queue:view"
    SEND_NOTIFICATIONS = "notification:send"
    MANAGE_NOTIFICATIONS = "notification:manage"
    MANAGE_REMEDIES = "remedy:manage"
    PRESCRIBE_REMEDY = "remedy:prescribe"
    VIEW_REMEDIES = "remedy:view_all"
    VIEW_PATIENTS = "patient:view"
    VIEW_COORDINATOR_DASHBOARD = "dashboard:coordinator"
    VIEW_ADMIN_DASHBOARD = "dashboard:admin"
    MANAGE_USERS = "user:manage"
    VIEW_AUDIT_LOGS = "audit:read"
    VIEW_SYSTEM_METRICS = "system:metrics"
    VIEW_API_DOCS = "system:docs"


_STAFF_CAPABILITIES = {
    Capability.BOOK_APPOINTMENT,
    Capability.MANAGE_APPOINTMENTS,
    Capability.MANUAL_CHECKIN,
    Capability.MANAGE_QUEUE,
    Capability.VIEW_QUEUES,
    Capability.SEND_NOTIFICATIONS,
    Capability.VIEW_REMEDIES,
}

# Single source of truth for what each role may do.
ROLE_CAPABILITIES: Dict[models.UserRole, frozenset] = {
    models.UserRole.USER: frozenset({Capability.BOOK_APPOINTMENT}),
    models.UserRole.COORDINATOR: frozenset(_STAFF_CAPABILITIES | {Capability.VIEW_COORDINATOR_DASHBOARD}),
    models.UserRole.GURUJI: frozenset(_STAFF_CAPABILITIES | {
        Capability.MANAGE_REMEDIES,
        Capability.PRESCRIBE_REMEDY,
        Capability.VIEW_PATIENTS,
    }),
    models.UserRole.ADMIN: frozenset(Capability),
}


def has_capability(user: models.User, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def is_staff(user: models.User) -> bool:
    return user.role in (models.UserRole.COORDINATOR, models.UserRole.GURUJI, models.UserRole.ADMIN)


# ==================== PASSWORDS & TOKENS ====================

def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unknown hash formats are a non-match, not a crash
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    to_encode.update({
        "exp": expire,
        "type": "access",
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user: models.User) -> str:
    return create_access_token({
        "sub": user.email or user.phone,
        "user_id": user.id,
        "role": user.role.value,
    })


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Verify and decode JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


# ==================== DEPENDENCIES ====================

async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    """Resolve the session user from the bearer header or the session cookie."""
    token = token or request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise AuthenticationError("Authentication required")

    payload = verify_token(token, "access")
    if not payload or not payload.get("user_id"):
        raise AuthenticationError("Could not validate credentials")

    user = db.get(models.User, payload["user_id"])
    if not user:
        raise AuthenticationError("Could not validate credentials")

    if not user.is_active:
        security_logger.warning(f"Inactive user {user.id} attempted access to {request.url.path}")
        raise AuthorizationError("User account is inactive")

    return user


def require_role(*allowed_roles: models.UserRole):
    """Dependency factory for role-based access control"""
    def role_dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {', '.join(role.value for role in allowed_roles)}"
            )
        return current_user

    return role_dependency


def require_capability(capability: Capability):
    """Dependency factory consulting ROLE_CAPABILITIES"""
    def capability_dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if not has_capability(current_user, capability):
            security_logger.info(f"User {current_user.id} ({current_user.role.value}) denied {capability.value}")
            raise AuthorizationError(f"Access denied. Missing permission: {capability.value}")
        return current_user

    return capability_dependency


require_admin = require_role(models.UserRole.ADMIN)
require_staff = require_role(models.UserRole.COORDINATOR, models.UserRole.GURUJI, models.UserRole.ADMIN)


# ==================== CHECK-IN COOLDOWN ====================

class CheckInCooldown:
    """Per-user cooldown suppressing rapid duplicate check-in submissions.

    Uses Redis when REDIS_URL is configured so every worker shares the same
    keys; otherwise falls back to a process-local TTL map.
    """

    def __init__(self, ttl_seconds: int, redis_client: Optional[redis.Redis] = None):
        self.ttl_seconds = ttl_seconds
        self.redis_client = redis_client
        self._local: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_for(user_id: int) -> str:
        return f"checkin:{user_id}"

    def acquire(self, user_id: int) -> bool:
        """Claim the cooldown; False if it is already held."""
        key = self.key_for(user_id)
        if self.redis_client is not None:
            try:
                return bool(self.redis_client.set(key, "1", nx=True, ex=self.ttl_seconds))
            except redis.RedisError as e:
                security_logger.warning(f"Redis unavailable for cooldown, using in-memory store: {e}")
        now = time.monotonic()
        with self._lock:
            expires_at = self._local.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._local[key] = now + self.ttl_seconds
            self._purge(now)
            return True

    def release(self, user_id: int) -> None:
        key = self.key_for(user_id)
        if self.redis_client is not None:
            try:
                self.redis_client.delete(key)
            except redis.RedisError as e:
                security_logger.warning(f"Failed to clear cooldown {key} in Redis: {e}")
        with self._lock:
            self._local.pop(key, None)

    def guard(self, user_id: int) -> None:
        if not self.acquire(user_id):
            raise RateLimitError("Please wait a few seconds before trying to check in again.")

    def reset(self) -> None:
        with self._lock:
            self._local.clear()

    def _purge(self, now: float) -> None:
        for key in [k for k, exp in self._local.items() if exp <= now]:
            del self._local[key]


def _build_redis_client() -> Optional[redis.Redis]:
    settings = get_settings()
    if not settings.redis_enabled:
        return None
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        return client
    except redis.RedisError as e:
        security_logger.warning(f"Redis not available, using in-memory cooldown storage: {e}")
        return None


checkin_cooldown = CheckInCooldown(get_settings().checkin_cooldown_seconds, _build_redis_client())


def add_security_headers(response):
    """Add security headers to response"""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response
