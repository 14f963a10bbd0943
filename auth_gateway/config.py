import logging

from functools import lru_cache
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    SQL = "sql"
    HTTP = "http"


class Settings(BaseSettings):
    public_base_url: str = Field(
        default="https://localhost:5173",
        description="First-party origin used to build web callback URLs",
    )
    log_level: str = "INFO"

    # WebAuthn/Passkey settings
    webauthn_rp_id: str = Field(default="localhost", description="Relying Party ID (domain)")
    webauthn_rp_name: str = Field(default="Auth Gateway", description="Relying Party display name")
    webauthn_origin: str = Field(default="https://localhost:5173", description="Expected origin for WebAuthn")
    webauthn_timeout: int = Field(default=60000, description="WebAuthn timeout in ms")
    challenge_ttl_seconds: int = Field(gt=0, default=300)
    # Accept assertions whose challenge is only known from the signed client data
    webauthn_allow_challengeless_assertion: bool = False

    # Session settings
    session_cookie_name: str = "session"
    session_ttl_days: int = Field(gt=0, default=30)
    cookie_secure: bool = True

    # Bearer token settings
    access_token_ttl_minutes: int = Field(gt=0, default=60)
    refresh_token_ttl_days: int = Field(gt=0, default=30)
    refresh_token_rotation: bool = True

    # OAuth settings
    oauth_state_ttl_seconds: int = Field(gt=0, default=600)
    oauth_provider_timeout: float = Field(gt=0, default=10.0)
    oauth_mobile_redirect_prefixes: list[str] = Field(default_factory=list)
    provider_cache_max_age: int = Field(gt=0, default=3600)
    google_client_id: str | None = None
    google_client_secret: str | None = None
    apple_client_id: str | None = None
    apple_team_id: str | None = None
    apple_key_id: str | None = None
    apple_private_key: str | None = None

    # Identity store settings
    identity_store_backend: StoreBackend = StoreBackend.SQL
    db_url: str = "sqlite:///./auth_gateway.db"
    identity_store_url: str | None = None
    identity_store_token: str | None = None
    identity_store_timeout: float = Field(gt=0, default=5.0)

    model_config = SettingsConfigDict(env_prefix='auth_')


@lru_cache()
def get_settings():
    return Settings()
