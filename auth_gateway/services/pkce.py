# (c) Copyright Datacraft, 2026
import base64
import hashlib
import secrets


def generate_code_verifier() -> str:
	# 64 bytes -> 86 url-safe characters, inside RFC 7636's 43..128 window
	return secrets.token_urlsafe(64)


def code_challenge_s256(code_verifier: str) -> str:
	return base64.urlsafe_b64encode(
		hashlib.sha256(code_verifier.encode()).digest()
	).rstrip(b"=").decode()


def generate_state() -> str:
	return secrets.token_urlsafe(32)
