"""
py_webauthn attestation engine adapter - Implements AttestationEngine protocol.

Cryptographic verification (client data, attestation statement, signature,
rp id hash, origin) is delegated entirely to py_webauthn. This adapter maps
domain challenges to registration options and verified registrations back
to domain credentials.
"""

import json
import logging
from typing import Any

import webauthn
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from src.domain.exceptions import AttestationRejected
from src.domain.models import AttestationChallenge, Credential

logger = logging.getLogger(__name__)


class PyWebAuthnEngine:
    """
    Implements AttestationEngine protocol via py_webauthn.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(
        self,
        rp_name: str,
        expected_origin: str,
        require_user_verification: bool = False,
    ) -> None:
        """
        Initialize engine.

        Args:
            rp_name: Human readable relying party name shown by browsers
            expected_origin: Origin the client must report, e.g. https://example.com
            require_user_verification: Reject responses without the UV flag
        """
        self._rp_name = rp_name
        self._expected_origin = expected_origin
        self._require_user_verification = require_user_verification

    def creation_options(self, challenge: AttestationChallenge) -> dict[str, Any]:
        user = challenge.user
        user_verification = (
            UserVerificationRequirement.REQUIRED
            if self._require_user_verification
            else UserVerificationRequirement.PREFERRED
        )
        options = webauthn.generate_registration_options(
            rp_id=challenge.rp_id,
            rp_name=self._rp_name,
            user_id=str(user.id).encode(),
            user_name=user.email,
            user_display_name=user.email,
            challenge=challenge.nonce,
            timeout=challenge.timeout_seconds * 1000,
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=credential_id)
                for credential_id in challenge.exclude_credentials
            ],
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=user_verification,
            ),
        )
        return json.loads(webauthn.options_to_json(options))

    def verify(
        self, challenge: AttestationChallenge, response: dict[str, Any]
    ) -> Credential:
        try:
            verified = webauthn.verify_registration_response(
                credential=response,
                expected_challenge=challenge.nonce,
                expected_rp_id=challenge.rp_id,
                expected_origin=self._expected_origin,
                require_user_verification=self._require_user_verification,
            )
        except (WebAuthnException, ValueError, KeyError, TypeError) as e:
            # Cause stays in the server log at debug level only.
            logger.debug("Attestation rejected: %s", type(e).__name__)
            raise AttestationRejected() from None

        if verified.credential_id in challenge.exclude_credentials:
            logger.debug("Attestation rejected: authenticator already enrolled")
            raise AttestationRejected()

        return Credential(
            id=verified.credential_id,
            public_key=verified.credential_public_key,
            sign_count=verified.sign_count,
            transports=_transports(response),
        )


def _transports(response: dict[str, Any]) -> frozenset[str]:
    """Transports reported by the client, if any; py_webauthn does not return them."""
    inner = response.get("response")
    if not isinstance(inner, dict):
        return frozenset()
    transports = inner.get("transports") or []
    return frozenset(t for t in transports if isinstance(t, str))
