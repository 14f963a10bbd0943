from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"
    API = "api"


class ChallengePurpose(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"
    DISCOVERABLE_AUTHENTICATION = "discoverable-authentication"


class CeremonyVariant(str, Enum):
    TARGETED = "targeted"
    DISCOVERABLE = "discoverable"


class OAuthProviderName(str, Enum):
    GOOGLE = "google"
    APPLE = "apple"


class ProviderIdentity(BaseModel):
    provider: str
    provider_id: str
    linked_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


class User(BaseModel):
    id: str
    email: str
    name: str | None = None
    picture: str | None = None
    identities: list[ProviderIdentity] = []
    last_login_platform: Platform | None = None
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


class Credential(BaseModel):
    """Stored WebAuthn public key credential."""
    id: str  # Base64URL credential id
    user_id: str
    public_key: str  # Base64URL COSE key
    counter: int = 0
    transports: list[str] = []
    user_verified: bool = False
    device_type: str | None = None
    backed_up: bool = False
    aaguid: str | None = None
    name: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    last_used_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Challenge(BaseModel):
    id: str
    challenge: str  # Base64URL challenge bytes
    purpose: ChallengePurpose
    user_id: str | None = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)
    # Pending sign-up data and other ceremony context
    context: dict[str, str] = {}

    model_config = ConfigDict(from_attributes=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utc_now())


class OAuthFlowState(BaseModel):
    state: str
    code_verifier: str
    provider: OAuthProviderName
    platform: Platform
    redirect_uri: str
    expires_at: datetime


class Session(BaseModel):
    id: str  # SHA-256 of the session token
    user_id: str
    platform: Platform = Platform.WEB
    user_agent: str | None = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


class TokenRecord(BaseModel):
    """Server-side view of a token pair; only hashes are kept."""
    id: str
    user_id: str
    access_token_hash: str
    refresh_token_hash: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    platform: Platform
    user_agent: str | None = None
    revoked: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    last_used_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TokenPair(BaseModel):
    token_id: str
    user_id: str
    platform: Platform
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime


class IdentityClaims(BaseModel):
    """Identity extracted from a provider ID token."""
    provider: OAuthProviderName
    subject: str
    email: str
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None


class IssuedCredentials(BaseModel):
    """What a successful ceremony or flow hands back to the caller."""
    user: User
    platform: Platform
    session_token: str | None = None
    session: Session | None = None
    tokens: TokenPair | None = None


# API request/response bodies


class UserPublic(BaseModel):
    id: str
    email: str
    name: str | None = None
    picture: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserPublic | None = None


class RegisterBeginRequest(BaseModel):
    """Request to begin passkey registration.

    Signed-in users add a passkey to their account. Anonymous callers must
    supply email and name to sign up with a passkey.
    """
    email: str | None = None
    name: str | None = None


class CeremonyBeginResponse(BaseModel):
    success: bool = True
    options: dict[str, Any]
    challenge_id: str


class RegisterCompleteRequest(BaseModel):
    response: dict[str, Any]
    challenge_id: str
    credential_name: str | None = None
    platform: Platform = Platform.WEB


class RegisterCompleteResponse(BaseModel):
    success: bool = True
    credential_id: str
    user: UserPublic
    tokens: TokenResponse | None = None


class AuthenticateBeginRequest(BaseModel):
    email: str | None = None


class AuthenticateCompleteRequest(BaseModel):
    response: dict[str, Any]
    challenge_id: str | None = None
    platform: Platform = Platform.WEB


class AuthenticateCompleteResponse(BaseModel):
    success: bool = True
    user: UserPublic
    tokens: TokenResponse | None = None


class CredentialInfo(BaseModel):
    """Passkey as shown to its owner; public key material is not exposed."""
    id: str
    name: str | None = None
    device_type: str | None = None
    backed_up: bool = False
    created_at: datetime
    last_used_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CredentialListResponse(BaseModel):
    credentials: list[CredentialInfo]


class CredentialRenameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class OAuthBeginRequest(BaseModel):
    platform: Platform
    redirect_uri: str | None = None


class OAuthBeginResponse(BaseModel):
    authorization_url: str
    state: str
    code_verifier: str | None = None  # Only returned to non-web platforms
    expires_in: int


class OAuthMobileCallbackRequest(BaseModel):
    code: str
    state: str
    stored_state: str
    code_verifier: str
    platform: Platform
    redirect_uri: str | None = None
    user: dict[str, Any] | None = None


class TokenRefreshRequest(BaseModel):
    refresh_token: str


class TokenExchangeRequest(BaseModel):
    session_token: str
    platform: Platform


class ProfileUpdateRequest(BaseModel):
    name: str = Field(max_length=200)
    picture: str | None = None


class ProfileUpdateResponse(BaseModel):
    success: bool = True
    message: str = "Profile updated successfully"
    user: UserPublic


class LogoutRequest(BaseModel):
    access_token: str | None = None
    session_token: str | None = None
    logout_all: bool = False


class LogoutResponse(BaseModel):
    success: bool = True
    message: str
    revoked: int = 0


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None
