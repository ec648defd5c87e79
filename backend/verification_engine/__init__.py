"""Verification-code issuance and validation engine.

Short-lived numeric codes bound to an (email, purpose) pair, used by
password-reset and two-step-verification flows.

Typical use:
    from verification_engine.services.verification_code_service import (
        VerificationCodeService,
    )
    from verification_engine.services.verification_code_store import (
        SqlVerificationCodeStore,
    )

    service = VerificationCodeService(SqlVerificationCodeStore(db))
    issued = await service.create_verification_code(
        email="reader@example.com", purpose="password-reset"
    )
"""
