from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from skillswap.crud import get_user_by_id, upsert_user
from skillswap.errors import UpstreamAuthError, unauthenticated
from skillswap.models import User
import httpx
import logging
import os

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))
IDENTITY_PROVIDER_URL = os.getenv("IDENTITY_PROVIDER_URL", "")
IDENTITY_PROVIDER_API_KEY = os.getenv("IDENTITY_PROVIDER_API_KEY", "")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str):
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise unauthenticated("Could not validate credentials")


class AuthProvider:
    """Resolves a bearer token to a persisted user, or raises AuthorizationError (401)."""

    name = "base"
    supports_credentials = False

    def authenticate(self, token: Optional[str], db: Session) -> User:
        raise NotImplementedError


class LocalAuthProvider(AuthProvider):
    """Users stored with a password hash in our own database, holding JWTs we issue."""

    name = "local"
    supports_credentials = True

    def issue_token(self, user: User) -> str:
        return create_access_token({"sub": user.id, "email": user.email})

    def authenticate(self, token, db):
        if not token:
            raise unauthenticated()
        payload = verify_token(token)
        user_id = payload.get("sub")
        if user_id is None:
            raise unauthenticated("Invalid authentication payload")
        user = get_user_by_id(db, user_id)
        if not user:
            raise unauthenticated("User not found")
        return user


class ExternalAuthProvider(AuthProvider):
    """
    Tokens issued by a hosted identity provider (Supabase-style `/auth/v1/user` endpoint).
    Every identity it confirms is upserted into the users table.
    """

    name = "external"

    def __init__(self, base_url: str = None, api_key: str = None, client: httpx.Client = None):
        self.base_url = (base_url or IDENTITY_PROVIDER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else IDENTITY_PROVIDER_API_KEY
        if not self.base_url and client is None:
            raise ValueError("IDENTITY_PROVIDER_URL must be set for the external auth provider")
        self.client = client or httpx.Client(base_url=self.base_url, timeout=5.0)

    def fetch_identity(self, token: str) -> dict:
        try:
            response = self.client.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": self.api_key},
            )
        except httpx.HTTPError as exc:
            logger.error("Identity provider unreachable: %s", exc)
            raise UpstreamAuthError(f"Cannot verify authentication: {exc}") from exc
        if response.status_code != 200:
            raise unauthenticated("Invalid authentication token")
        identity = response.json()
        if not identity.get("id"):
            raise unauthenticated("Invalid authentication payload")
        return identity

    def authenticate(self, token, db):
        if not token:
            raise unauthenticated()
        identity = self.fetch_identity(token)
        metadata = identity.get("user_metadata") or {}
        email = identity.get("email")
        return upsert_user(
            db,
            identity["id"],
            email=email,
            first_name=metadata.get("first_name"),
            last_name=metadata.get("last_name"),
            profile_image_url=metadata.get("avatar_url")
            or (f"https://api.dicebear.com/7.x/avataaars/svg?seed={email}" if email else None),
        )


class DisabledAuthProvider(AuthProvider):
    name = "none"

    def authenticate(self, token, db):
        raise unauthenticated("Authentication is not configured")


AUTH_PROVIDERS = {
    LocalAuthProvider.name: LocalAuthProvider,
    ExternalAuthProvider.name: ExternalAuthProvider,
    DisabledAuthProvider.name: DisabledAuthProvider,
}


def build_auth_provider(name: str) -> AuthProvider:
    provider_cls = AUTH_PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ValueError(f"Unknown AUTH_PROVIDER '{name}', expected one of {sorted(AUTH_PROVIDERS)}")
    return provider_cls()
