# (c) Copyright Datacraft, 2026
"""Error taxonomy shared by ceremonies, flows and the session service.

Every error carries a generic ``public_message`` that is safe to return to
the caller. Anything more specific goes to the log, never the response.
"""
from fastapi import status

AUTHENTICATION_FAILED = "Authentication failed"


class AuthError(Exception):
	"""Base authentication error."""
	code = "auth_error"
	status_code = status.HTTP_400_BAD_REQUEST
	public_message = "Request failed"

	def __init__(self, detail: str | None = None):
		super().__init__(detail or self.public_message)
		self.detail = detail or self.public_message


class InvalidRequest(AuthError):
	"""Malformed or incomplete input."""
	code = "invalid_request"
	public_message = "Invalid request"

	def __init__(self, detail: str | None = None):
		super().__init__(detail)
		# Input validation messages describe the caller's own input
		if detail:
			self.public_message = detail


class Unauthorized(AuthError):
	"""No session or token, or one that is no longer valid."""
	code = "unauthorized"
	status_code = status.HTTP_401_UNAUTHORIZED
	public_message = "Not authenticated"


class SessionNotFound(Unauthorized):
	code = "session_not_found"


class SessionExpired(Unauthorized):
	code = "session_expired"


class InvalidOrExpired(Unauthorized):
	"""Token unknown, expired, revoked or already exchanged."""
	code = "invalid_token"
	public_message = "Invalid or expired token"


class ChallengeNotFound(AuthError):
	code = "challenge_not_found"
	public_message = "Invalid or expired challenge"


class ChallengeExpired(AuthError):
	code = "challenge_expired"
	public_message = "Invalid or expired challenge"


class CredentialNotFound(AuthError):
	code = "credential_not_found"
	status_code = status.HTTP_401_UNAUTHORIZED
	public_message = AUTHENTICATION_FAILED


class VerificationFailed(AuthError):
	"""Signature, origin or relying-party mismatch."""
	code = "verification_failed"
	status_code = status.HTTP_401_UNAUTHORIZED
	public_message = AUTHENTICATION_FAILED


class ReplayDetected(AuthError):
	"""Signature counter did not advance."""
	code = "replay_detected"
	status_code = status.HTTP_401_UNAUTHORIZED
	public_message = AUTHENTICATION_FAILED


class StateMismatch(AuthError):
	"""OAuth state did not match the one issued to this client."""
	code = "invalid_state"
	public_message = "Invalid OAuth state"


class ProviderError(AuthError):
	"""Upstream OAuth provider failure."""
	code = "oauth_error"
	status_code = status.HTTP_502_BAD_GATEWAY
	public_message = "Sign-in with provider failed"


class InternalError(AuthError):
	code = "server_error"
	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	public_message = "Internal server error"


class IdentityStoreError(InternalError):
	"""The identity store could not complete a request."""
	code = "store_error"
