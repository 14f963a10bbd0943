# (c) Copyright Datacraft, 2026
"""Authentication services."""
from .challenge import ChallengeStore
from .identity import IdentityResolver
from .oauth import OAuthFlowManager
from .passkey import PasskeyCeremonyManager
from .providers import ProviderRegistry
from .session import SessionService

__all__ = [
	"ChallengeStore",
	"IdentityResolver",
	"OAuthFlowManager",
	"PasskeyCeremonyManager",
	"ProviderRegistry",
	"SessionService",
]
