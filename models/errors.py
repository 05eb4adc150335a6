"""
Error hierarchy for the request verifier.

Configuration failures (missing rule, unknown type, unaddressable request)
abort a single request attempt. Account failures are transient: the batch
processor rolls the record back to pending and retries on the next run.
"""
from __future__ import annotations


class VerifierError(Exception):
    """Base exception for all verifier operations."""


class RuleNotConfiguredError(VerifierError):
    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(f"No rule configured for {request_type} requests")


class UnknownRequestTypeError(VerifierError):
    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(f"Unsupported request type: {request_type}")


class MissingMessageIdError(VerifierError):
    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(f"Request has no message id: {request_type}")


class AccountError(VerifierError):
    """Base for failures reaching an account."""

    def __init__(self, message: str, account_id: str = "", retryable: bool = True):
        self.account_id = account_id
        self.retryable = retryable
        super().__init__(message)


class AccountNotFoundError(AccountError):
    def __init__(self, account_id: str):
        super().__init__(f"Account not registered: {account_id}", account_id, retryable=False)


class AccountOfflineError(AccountError):
    def __init__(self, account_id: str):
        super().__init__(f"Account is not live: {account_id}", account_id)


class ResponseDeliveryError(AccountError):
    def __init__(self, account_id: str, reason: str):
        self.reason = reason
        super().__init__(f"Failed to deliver response via {account_id}: {reason}", account_id)
