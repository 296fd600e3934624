"""
Shared fixtures for the HealthVault test suite.

Every test gets its own in-memory SQLite database. HTTP tests talk to the
real FastAPI app through httpx with the database, mailer, token issuer and
auth service dependencies overridden.
"""

import os

# Fast hashing and a throwaway database URL; must be set before settings load
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from typing import Dict, List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import healthvault.models  # noqa: F401
from healthvault.core.config import get_auth_config
from healthvault.core.rate_limiter import rate_limiter
from healthvault.core.security import TokenIssuer, get_token_issuer
from healthvault.db.session import Base, get_db
from healthvault.models.user import User, UserRole
from healthvault.services.auth_service import AuthService, get_auth_service
from healthvault.services.code_service import OneTimeCodeService
from healthvault.services.email_service import get_email_service
from healthvault.services.session_service import SessionService
from healthvault.services.user_service import UserService

API = "/api/v1/auth"
PASSWORD = "Str0ng!Pass"
CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FakeMailer:
    """Stands in for EmailService; remembers what would have been sent."""

    def __init__(self):
        self.fail = False
        self.otps: Dict[str, str] = {}
        self.verification_tokens: Dict[str, str] = {}
        self.reset_tokens: Dict[str, str] = {}
        self.sent: List[Tuple[str, str]] = []

    async def send_otp(self, to_email: str, otp: str, expiry_minutes: int = 5) -> bool:
        self.otps[to_email] = otp
        self.sent.append(("otp", to_email))
        return not self.fail

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        self.verification_tokens[to_email] = token
        self.sent.append(("verification", to_email))
        return not self.fail

    async def send_password_reset(self, to_email: str, token: str) -> bool:
        self.reset_tokens[to_email] = token
        self.sent.append(("password_reset", to_email))
        return not self.fail

    async def send_welcome(self, to_email: str, full_name: Optional[str]) -> bool:
        self.sent.append(("welcome", to_email))
        return not self.fail

    async def send_password_changed(self, to_email: str, full_name: Optional[str]) -> bool:
        self.sent.append(("password_changed", to_email))
        return not self.fail


# ============================================
# Database
# ============================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_user(session_factory):
    """Insert a user directly, bypassing the registration flows."""

    async def _create(
        email: str = "jane@example.com",
        password: str = PASSWORD,
        full_name: str = "Jane Doe",
        role: UserRole = UserRole.PATIENT,
        email_verified: bool = True,
        is_active: bool = True,
    ) -> User:
        async with session_factory() as session:
            user = await UserService.create(
                session,
                email=email,
                password=password,
                full_name=full_name,
                role=role,
                email_verified=email_verified,
            )
            user.is_active = is_active
            await session.commit()
            return user

    return _create


# ============================================
# Services
# ============================================

@pytest.fixture
def auth_config():
    return get_auth_config()


@pytest.fixture
def tokens(auth_config):
    return TokenIssuer(auth_config)


@pytest.fixture
def sessions(auth_config, tokens):
    return SessionService(auth_config, tokens)


@pytest.fixture
def codes(auth_config):
    return OneTimeCodeService(auth_config)


@pytest.fixture
def auth_service(auth_config, tokens, sessions, codes):
    return AuthService(auth_config, tokens, sessions, codes)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture(autouse=True)
def clear_rate_limits():
    rate_limiter.clear()
    yield
    rate_limiter.clear()


# ============================================
# HTTP
# ============================================

@pytest.fixture
def app(session_factory, mailer, tokens, auth_service):
    from main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_email_service] = lambda: mailer
    fastapi_app.dependency_overrides[get_token_issuer] = lambda: tokens
    fastapi_app.dependency_overrides[get_auth_service] = lambda: auth_service
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def post_with_refresh_cookie(client: AsyncClient, path: str, refresh_token: str):
    """POST with exactly this refresh cookie, ignoring anything in the client's jar."""
    client.cookies.clear()
    return await client.post(path, headers={"Cookie": f"refreshToken={refresh_token}"})


async def login(client: AsyncClient, email: str = "jane@example.com", password: str = PASSWORD, **kwargs):
    return await client.post(f"{API}/login", json={"email": email, "password": password}, **kwargs)
