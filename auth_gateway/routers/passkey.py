# (c) Copyright Datacraft, 2026
"""WebAuthn/Passkey API endpoints."""
import logging

from fastapi import APIRouter, Depends, Request, Response

from auth_gateway import schema
from auth_gateway.config import Settings
from auth_gateway.dependencies import (
	apply_issued,
	get_app_settings,
	get_current_user,
	get_optional_user,
	get_passkey_manager,
	user_agent,
)
from auth_gateway.exceptions import InvalidRequest
from auth_gateway.services import PasskeyCeremonyManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webauthn", tags=["Passkeys"])


@router.post("/register/begin", response_model=schema.CeremonyBeginResponse)
async def begin_registration(
	body: schema.RegisterBeginRequest,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	user: schema.User | None = Depends(get_optional_user),
) -> schema.CeremonyBeginResponse:
	"""Add a passkey when signed in, otherwise start a passkey sign-up."""
	if user is not None:
		options = await manager.begin_registration(user)
	elif body.email:
		options = await manager.begin_signup(body.email, body.name)
	else:
		raise InvalidRequest("email is required to sign up with a passkey")

	return schema.CeremonyBeginResponse(
		options=options.options,
		challenge_id=options.challenge_id,
	)


@router.post("/register/complete", response_model=schema.RegisterCompleteResponse)
async def complete_registration(
	request: Request,
	response: Response,
	body: schema.RegisterCompleteRequest,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	settings: Settings = Depends(get_app_settings),
	user: schema.User | None = Depends(get_optional_user),
) -> schema.RegisterCompleteResponse:
	result = await manager.complete_registration(
		user,
		body.response,
		body.challenge_id,
		name=body.credential_name,
		platform=body.platform,
		user_agent=user_agent(request),
	)

	tokens = None
	if result.issued is not None:
		tokens = apply_issued(response, settings, result.issued)

	return schema.RegisterCompleteResponse(
		credential_id=result.credential.id,
		user=schema.UserPublic.model_validate(result.user),
		tokens=tokens,
	)


@router.post("/authenticate/begin", response_model=schema.CeremonyBeginResponse)
async def begin_authentication(
	body: schema.AuthenticateBeginRequest,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
) -> schema.CeremonyBeginResponse:
	"""Start passkey authentication (no auth required)."""
	options = await manager.begin_authentication(body.email)
	return schema.CeremonyBeginResponse(
		options=options.options,
		challenge_id=options.challenge_id,
	)


@router.post("/authenticate/complete", response_model=schema.AuthenticateCompleteResponse)
async def complete_authentication(
	request: Request,
	response: Response,
	body: schema.AuthenticateCompleteRequest,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	settings: Settings = Depends(get_app_settings),
) -> schema.AuthenticateCompleteResponse:
	"""Complete passkey authentication (no auth required)."""
	issued = await manager.complete_authentication(
		body.response,
		challenge_id=body.challenge_id,
		platform=body.platform,
		user_agent=user_agent(request),
	)
	return schema.AuthenticateCompleteResponse(
		user=schema.UserPublic.model_validate(issued.user),
		tokens=apply_issued(response, settings, issued),
	)


@router.get("/credentials", response_model=schema.CredentialListResponse)
async def list_credentials(
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	user: schema.User = Depends(get_current_user),
) -> schema.CredentialListResponse:
	credentials = await manager.list_credentials(user)
	return schema.CredentialListResponse(
		credentials=[schema.CredentialInfo.model_validate(c) for c in credentials],
	)


@router.patch("/credentials/{credential_id}", response_model=schema.SuccessResponse)
async def rename_credential(
	credential_id: str,
	body: schema.CredentialRenameRequest,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	user: schema.User = Depends(get_current_user),
) -> schema.SuccessResponse:
	await manager.rename_credential(user, credential_id, body.name)
	return schema.SuccessResponse(message="Passkey renamed")


@router.delete("/credentials/{credential_id}", response_model=schema.SuccessResponse)
async def delete_credential(
	credential_id: str,
	manager: PasskeyCeremonyManager = Depends(get_passkey_manager),
	user: schema.User = Depends(get_current_user),
) -> schema.SuccessResponse:
	await manager.delete_credential(user, credential_id)
	return schema.SuccessResponse(message="Passkey deleted")
