"""Identity: password hashing, bearer tokens, registration and login.

The link service never sees tokens. It receives a ``Principal`` (user id plus
admin flag) resolved from the ``Authorization`` header by the HTTP layer.

Flow Diagram — register()
=========================
::
    ┌─────────────┐
    │ POST /api/  │
    │ auth/       │
    │ register    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Email +     │──── violations ──▶ CredentialsError (400)
    │ password    │
    │ policy      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Email free? │──── taken ───────▶ CredentialsError (400)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Pick role:  │
    │ allow-list  │
    │ or first    │
    │ user rule   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ bcrypt hash,│
    │ insert user │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Signed JWT  │
    └─────────────┘

Key Behaviours
===============
- Passwords are hashed with bcrypt; the 72-byte bcrypt limit is part of the
  password policy instead of silently truncating.
- Tokens are HS256 JWTs carrying ``sub``, ``email``, ``role``, ``iss``,
  ``aud``, ``iat`` and ``exp``; issuer and audience are checked on decode.
- Admins come from the ``ADMIN_EMAILS`` allow-list, or the first registered
  user when ``FIRST_USER_IS_ADMIN`` is set. If two first registrations race,
  both end up as ``User``; use the allow-list for a deterministic bootstrap.
- A bare token in ``Authorization`` is accepted as if prefixed with
  ``Bearer``.
"""

import datetime
import logging
import string
from dataclasses import dataclass

import bcrypt
import validators
from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from shortener.config import Settings
from shortener.enums import Role
from shortener.errors import CredentialsError, StorageUnavailableError, UnauthenticatedError
from shortener.models import User, utcnow
from shortener.schemas import Credentials

__all__ = [
    "AuthService",
    "Principal",
    "create_access_token",
    "decode_access_token",
    "hash_password",
    "password_policy_errors",
    "principal_from_authorization",
    "verify_password",
]

BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


# ============================================================================
# PASSWORDS
# ============================================================================


def password_policy_errors(password: str, min_length: int) -> list[str]:
    errors = []
    if len(password) < min_length:
        errors.append(f"Passwords must be at least {min_length} characters.")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        errors.append(f"Passwords must be at most {BCRYPT_MAX_BYTES} bytes.")
    if not any(c.isdigit() for c in password):
        errors.append("Passwords must have at least one digit ('0'-'9').")
    if not any(c.islower() for c in password):
        errors.append("Passwords must have at least one lowercase ('a'-'z').")
    if not any(c.isupper() for c in password):
        errors.append("Passwords must have at least one uppercase ('A'-'Z').")
    if all(c in string.ascii_letters + string.digits for c in password):
        errors.append("Passwords must have at least one non alphanumeric character.")
    return errors


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))


# ============================================================================
# TOKENS
# ============================================================================


def create_access_token(user: User, settings: Settings, expires_delta: datetime.timedelta | None = None) -> str:
    issued_at = utcnow()
    expire = issued_at + (expires_delta or datetime.timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Principal:
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except JWTError as exc:
        raise UnauthenticatedError(f"Invalid token: {exc}") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Token carries no subject")
    return Principal(user_id=user_id, email=payload.get("email", ""), role=Role.from_str(payload.get("role", "")))


def principal_from_authorization(header: str | None, settings: Settings) -> Principal:
    """Resolve the caller from an ``Authorization`` header value."""
    if not header or not header.strip():
        raise UnauthenticatedError("Missing Authorization header")
    scheme, _, credentials = header.strip().partition(" ")
    token = credentials.strip() if scheme.lower() == "bearer" else header.strip()
    if not token:
        raise UnauthenticatedError("Empty bearer token")
    return decode_access_token(token, settings)


# ============================================================================
# REGISTRATION / LOGIN
# ============================================================================


class AuthService:
    """Registers users and issues tokens against the ``users`` table.

    bcrypt runs in the threadpool so hashing never stalls the event loop.
    """

    def __init__(self, session: AsyncSession, settings: Settings, logger: logging.Logger | logging.LoggerAdapter):
        self._db = session
        self._settings = settings
        self._logger = logger

    async def register(self, credentials: Credentials) -> str:
        errors = []
        if not validators.email(credentials.email):
            errors.append(f"Email '{credentials.email}' is invalid.")
        errors.extend(password_policy_errors(credentials.password, self._settings.PASSWORD_MIN_LENGTH))
        if errors:
            raise CredentialsError(errors)

        password_hash = await run_in_threadpool(hash_password, credentials.password)
        try:
            if await self._find_user(credentials.email) is not None:
                raise CredentialsError([f"Email '{credentials.email}' is already taken."])

            role = await self._role_for(credentials.email)
            first_user_bootstrap = role is Role.ADMIN and not self._is_allow_listed(credentials.email)
            user = User(email=credentials.email, password_hash=password_hash, role=role.value)
            self._db.add(user)
            try:
                await self._db.commit()
            except IntegrityError as exc:
                await self._db.rollback()
                raise CredentialsError([f"Email '{credentials.email}' is already taken."]) from exc

            # Count and insert are not atomic; a concurrent registration may
            # have committed too, in which case nobody keeps the bootstrap role.
            if first_user_bootstrap and await self._user_count() > 1:
                user.role = Role.USER.value
                await self._db.commit()
                self._logger.warning(f"First-user admin bootstrap lost a race; {user.email} registered as User")
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"User store unavailable: {exc}") from exc

        self._logger.info(f"User registered: {user.email} as {user.role}")
        return create_access_token(user, self._settings)

    async def login(self, credentials: Credentials) -> str:
        try:
            user = await self._find_user(credentials.email)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"User store unavailable: {exc}") from exc

        if user is None or not await run_in_threadpool(verify_password, credentials.password, user.password_hash):
            self._logger.warning(f"Failed login for {credentials.email}")
            raise CredentialsError(["Invalid credentials"])
        return create_access_token(user, self._settings)

    async def _find_user(self, email: str) -> User | None:
        result = await self._db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def _user_count(self) -> int:
        return await self._db.scalar(select(func.count()).select_from(User)) or 0

    def _is_allow_listed(self, email: str) -> bool:
        return email in {address.strip().lower() for address in self._settings.ADMIN_EMAILS}

    async def _role_for(self, email: str) -> Role:
        if self._is_allow_listed(email):
            return Role.ADMIN
        if self._settings.FIRST_USER_IS_ADMIN and await self._user_count() == 0:
            return Role.ADMIN
        return Role.USER
