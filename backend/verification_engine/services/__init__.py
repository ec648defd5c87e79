"""Verification code services.

- code_generator: numeric code generation
- verification_code_store: store abstraction (SQL + in-memory)
- verification_code_service: create, resend, verify, delete
- verification_code_cleanup: background expiry sweep
"""
