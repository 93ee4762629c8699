import re
import time
import jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from .config import settings
from .errors import AuthError
from .models import Account, Profile
from .schemas import Session

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")
MIN_PASSWORD_LENGTH = 6


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def username_to_email(username: str) -> str:
    # Sign-in is by username; the auth layer only knows addresses.
    return f"{username.strip().lower()}@{settings.auth_email_domain}"


def create_token(sub: str, kind: str, expires_minutes: int, **claims) -> str:
    now = int(time.time())
    payload = {"sub": sub, "typ": kind, "iat": now, "exp": now + 60 * expires_minutes, **claims}
    return jwt.encode(payload, settings.store_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, kind: str = "access") -> dict:
    try:
        data = jwt.decode(token, settings.store_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    if data.get("typ") != kind:
        raise AuthError("Invalid token")
    return data


def issue_session(user_id: str, email: str, username: str) -> Session:
    access = create_token(user_id, "access", settings.access_token_expire_minutes, email=email, username=username)
    refresh = create_token(user_id, "refresh", settings.refresh_token_expire_minutes, email=email, username=username)
    return Session(
        access_token=access,
        refresh_token=refresh,
        expires_at=int(time.time()) + 60 * settings.access_token_expire_minutes,
        user_id=user_id,
        email=email,
        username=username,
    )


class AuthService:
    """Credential store and token issuer behind the session manager."""

    def __init__(self, session_factory: async_sessionmaker | None = None) -> None:
        if session_factory is None:
            from .db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    async def sign_up(self, username: str, password: str) -> Session:
        username = username.strip()
        if not USERNAME_RE.match(username):
            raise AuthError("Username may only contain letters, digits, '.', '_' and '-'")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        email = username_to_email(username)
        async with self.session_factory() as db:
            account = Account(email=email, password_hash=get_password_hash(password))
            db.add(account)
            try:
                await db.flush()
                db.add(Profile(id=account.id, username=username))
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise AuthError("User already registered")
            return issue_session(account.id, email, username)

    async def sign_in(self, username: str, password: str) -> Session:
        email = username_to_email(username)
        async with self.session_factory() as db:
            res = await db.execute(
                select(Account, Profile.username).join(Profile, Profile.id == Account.id).where(Account.email == email)
            )
            row = res.first()
        if not row or not verify_password(password, row[0].password_hash):
            raise AuthError("Invalid login credentials")
        account, name = row
        return issue_session(account.id, account.email, name)

    async def refresh(self, refresh_token: str) -> Session:
        data = decode_token(refresh_token, kind="refresh")
        async with self.session_factory() as db:
            account = await db.get(Account, data["sub"])
        if not account:
            raise AuthError("User not found")
        return issue_session(account.id, account.email, data.get("username", ""))

    async def get_user(self, access_token: str) -> str:
        return decode_token(access_token)["sub"]
