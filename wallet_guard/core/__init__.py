"""
Core modules for wallet_guard.

This package contains the billing pipeline: rate limiting, idempotency,
the wallet ledger, circuit breakers, provider orchestration and
compensation.
"""
