"""Passkey and OAuth sign-in gateway."""
