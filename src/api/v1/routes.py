"""
API v1 routes.

Defines REST endpoints for passkey account recovery.
"""

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from src.api.dependencies import get_recovery_orchestrator
from src.api.models import (
    ErrorResponse,
    LostDeviceRequest,
    MessageResponse,
    RecoverRequest,
    RecoverResponse,
    RecoveryOptionsRequest,
)
from src.config.settings import get_settings
from src.domain.exceptions import InvalidRecoveryToken, RecoveryUnavailable
from src.domain.ports import RecoveryResult
from src.domain.recovery import RecoveryOrchestrator

router = APIRouter(prefix="/recovery", tags=["v1"])

RECOVERY_ATTACHED = "A new device has been attached to your account."

# Messages shown against the email field, per failure reason
_FAILURE_MESSAGES = {
    RecoveryResult.INVALID_TOKEN: "The recovery token is invalid or has expired.",
    RecoveryResult.INVALID_ATTESTATION: "The device could not be verified.",
    RecoveryResult.DUPLICATE_CREDENTIAL: "This device is already registered.",
}


@router.post(
    "/lost",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        422: {"description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Recovery temporarily unavailable"},
    },
    summary="Request a recovery token",
    description="Email a single-use recovery token if the address belongs to an account. "
    "The response is identical whether or not it does.",
)
async def lost_device(
    request_data: LostDeviceRequest,
    orchestrator: RecoveryOrchestrator = Depends(get_recovery_orchestrator),
) -> MessageResponse:
    try:
        orchestrator.request_recovery(request_data.email)
    except RecoveryUnavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable",
        ) from None
    return MessageResponse(message="If the account exists, a recovery email has been sent.")


@router.post(
    "/options",
    responses={
        200: {"description": "PublicKeyCredentialCreationOptions JSON"},
        401: {"model": ErrorResponse, "description": "Invalid email or token"},
        422: {"description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Recovery temporarily unavailable"},
    },
    summary="Get attestation options for a recovery",
    description="Exchange an email and recovery token for WebAuthn credential creation "
    "options. The token cannot be used to request options again.",
)
async def recovery_options(
    request_data: RecoveryOptionsRequest,
    orchestrator: RecoveryOrchestrator = Depends(get_recovery_orchestrator),
) -> dict[str, Any]:
    """
    Issue a challenge for the account the token belongs to.

    - **email**: Account email address
    - **token**: Recovery token received by email
    """
    try:
        challenge = orchestrator.begin_recovery(request_data.email, request_data.token)
    except InvalidRecoveryToken:
        # Unknown email and bad token share one response (no enumeration)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        ) from None
    except RecoveryUnavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable",
        ) from None
    return orchestrator.creation_options(challenge)


@router.post(
    "/recover",
    response_model=RecoverResponse,
    responses={
        422: {"description": "Recovery rejected or validation error"},
        500: {"model": ErrorResponse, "description": "Recovery failed"},
    },
    summary="Attach a new device and log in",
    description="Submit the attestation produced for the recovery options together with "
    "the same email and token. Set `unique` or the `WebAuthn-Unique` header to disable "
    "every other device on the account.",
)
async def recover(
    request_data: RecoverRequest,
    response: Response,
    webauthn_unique: bool | None = Header(default=None, alias="WebAuthn-Unique"),
    orchestrator: RecoveryOrchestrator = Depends(get_recovery_orchestrator),
) -> RecoverResponse:
    """
    Complete the recovery.

    - **email** / **token**: Same values used for the options request
    - **attestationResponse**: Output of navigator.credentials.create()
    - **unique**: Disable all previously registered devices
    """
    outcome = orchestrator.complete_recovery(
        request_data.email,
        request_data.token,
        request_data.attestation_response,
        force_unique_device=request_data.unique or webauthn_unique is True,
    )

    if outcome.is_attached:
        settings = get_settings()
        response.set_cookie(
            settings.session_cookie_name,
            outcome.session_key or "",
            httponly=True,
            secure=settings.expected_origin.startswith("https://"),
            samesite="lax",
        )
        return RecoverResponse(message=RECOVERY_ATTACHED, redirect_to=settings.redirect_to)

    if outcome.result == RecoveryResult.INTERNAL_ERROR:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Recovery failed",
        )

    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=[
            {
                "loc": ["body", "email"],
                "msg": _FAILURE_MESSAGES[outcome.result],
                "type": outcome.result.value,
            }
        ],
    )
