"""WebAuthn attestation engine adapters."""
