"""Tests for core data models and the error hierarchy."""
import pytest
from pydantic import ValidationError

from models.errors import (
    AccountError, AccountNotFoundError, AccountOfflineError, ResponseDeliveryError,
    RuleNotConfiguredError, VerifierError,
)
from models.schemas import (
    CachedRequest, RequestEvent, RequestSnapshot, RequestStatus, RequestType,
    make_account_id, request_key,
)


class TestKeys:
    def test_request_key(self):
        assert request_key(RequestType.GROUP_INVITE, "123") == "group-invite:123"
        assert request_key("contact", "9") == "contact:9"

    def test_account_id(self):
        assert make_account_id("onebot", "10000") == "onebot:10000"


class TestCachedRequest:
    def test_store_roundtrip_keeps_enums_as_strings(self):
        record = CachedRequest(
            type=RequestType.GROUP_JOIN,
            timestamp=42,
            snapshot=RequestSnapshot(platform="onebot", self_id="1", message_id="j1", user_id="u"),
        )
        data = record.to_store()
        assert data["type"] == "group-join"
        assert data["status"] == "pending"
        restored = CachedRequest.from_store(data)
        assert restored.key == "group-join:j1"
        assert restored.account_id == "onebot:1"

    def test_defaults(self):
        record = CachedRequest(type="contact", snapshot={"platform": "p", "self_id": "s"})
        assert record.status == RequestStatus.PENDING
        assert record.timestamp > 0
        assert record.attempts == 0

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            CachedRequest.from_store({
                "type": "contact", "status": "failed",
                "snapshot": {"platform": "p", "self_id": "s"},
            })


class TestRequestEvent:
    def test_to_snapshot_copies_payload(self):
        event = RequestEvent(type="contact", platform="onebot", self_id="1",
                             message_id="m", payload={"flag": "x"})
        snapshot = event.to_snapshot()
        snapshot.payload["flag"] = "y"
        assert event.payload["flag"] == "x"
        assert snapshot.account_id == "onebot:1"


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(AccountOfflineError, AccountError)
        assert issubclass(AccountError, VerifierError)
        assert issubclass(RuleNotConfiguredError, VerifierError)

    def test_retryable_flags(self):
        assert AccountNotFoundError("a").retryable is False
        assert AccountOfflineError("a").retryable is True
        err = ResponseDeliveryError("onebot:1", "timeout")
        assert err.account_id == "onebot:1"
        assert err.reason == "timeout"
        assert "timeout" in str(err)
