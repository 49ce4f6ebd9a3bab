"""Tests for webhook payload models, signatures and request classification."""

import json
import time

import pytest
from pydantic import ValidationError

from lark_minutes.webhooks.handlers import (
    NONCE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    ChallengeRequest,
    EventRequest,
    RejectedRequest,
    compute_signature,
    process_webhook_request,
    timestamp_age,
    validate_lark_signature,
    validate_verification_token,
)
from lark_minutes.webhooks.models import (
    GenericEvent,
    MeetingEndedContext,
    MeetingEndedEvent,
    ProcessingState,
    RecordingReadyEvent,
    TranscriptReadyEvent,
    WebhookPayload,
    WebhookProcessingResult,
)

KEY = "encrypt-key"
TOKEN = "verify-token"


def meeting_ended_body(event_id="e1", **event):
    return {
        "schema": "2.0",
        "header": {
            "event_id": event_id,
            "token": TOKEN,
            "create_time": "1700000000000",
            "event_type": "vc.meeting.meeting_ended_v1",
            "tenant_key": "tenant",
            "app_id": "cli_app",
        },
        "event": {
            "type": "vc.meeting.meeting_ended_v1",
            "meeting_id": "m1",
            "end_time": 1700000000,
            "host_user_id": "u1",
            **event,
        },
    }


def signed_headers(body: bytes, key=KEY, timestamp=None, nonce="n1"):
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return {
        SIGNATURE_HEADER: compute_signature(ts, nonce, body, key),
        TIMESTAMP_HEADER: ts,
        NONCE_HEADER: nonce,
    }


# ---------------------------------------------------------------------------
# Model tests
# ---------------------------------------------------------------------------

class TestWebhookPayload:
    def test_parse_meeting_ended(self):
        payload = WebhookPayload.parse(meeting_ended_body(topic="Standup", participant_count=4))
        assert isinstance(payload.event, MeetingEndedEvent)
        assert payload.header.event_id == "e1"
        assert payload.header.tenant_key == "tenant"
        assert payload.schema_version == "2.0"
        assert payload.event.topic == "Standup"
        assert payload.event.participant_count == 4

    def test_parse_transcript_ready(self):
        data = {
            "header": {"event_id": "e2"},
            "event": {
                "type": "vc.meeting.transcript_ready_v1",
                "meeting_id": "m1",
                "transcript_id": "t1",
                "ready_time": 1700000100,
            },
        }
        payload = WebhookPayload.parse(data)
        assert isinstance(payload.event, TranscriptReadyEvent)
        assert payload.event.transcript_id == "t1"

    def test_parse_recording_ready(self):
        data = {
            "header": {"event_id": "e3"},
            "event": {
                "type": "vc.meeting.recording_ready_v1",
                "meeting_id": "m1",
                "recording_id": "r1",
                "ready_time": 1700000100,
            },
        }
        assert isinstance(WebhookPayload.parse(data).event, RecordingReadyEvent)

    def test_unknown_type_is_generic(self):
        data = {"header": {"event_id": "e4"}, "event": {"type": "im.message.receive_v1", "x": 1}}
        payload = WebhookPayload.parse(data)
        assert isinstance(payload.event, GenericEvent)
        assert payload.event.type == "im.message.receive_v1"

    def test_unhashable_type_is_validation_error(self):
        with pytest.raises(ValidationError):
            WebhookPayload.parse({"header": {"event_id": "e5"}, "event": {"type": []}})

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda d: d["event"].pop("meeting_id"),
            lambda d: d["event"].update(meeting_id=""),
            lambda d: d["event"].update(end_time=0),
            lambda d: d["event"].update(host_user_id=""),
            lambda d: d["event"].update(participant_count=-1),
            lambda d: d["header"].update(event_id=""),
            lambda d: d.pop("event"),
        ],
    )
    def test_invalid_payloads_rejected(self, mutate):
        data = meeting_ended_body()
        mutate(data)
        with pytest.raises(ValidationError):
            WebhookPayload.parse(data)

    def test_events_are_immutable(self):
        payload = WebhookPayload.parse(meeting_ended_body())
        with pytest.raises(ValidationError):
            payload.event.meeting_id = "other"


class TestProcessingResult:
    def test_to_dict_omits_empty_fields(self):
        result = WebhookProcessingResult(
            state=ProcessingState.SKIPPED, event_id="e1", duration_ms=3
        )
        data = result.to_dict()
        assert data["state"] == "skipped"
        assert "meeting_id" not in data
        assert "error" not in data
        assert data["completed_at"]

    def test_to_dict_includes_error(self):
        result = WebhookProcessingResult(
            state=ProcessingState.FAILED,
            event_id="e1",
            duration_ms=3,
            meeting_id="m1",
            error="boom",
            error_code="GENERATION_FAILED",
        )
        data = result.to_dict()
        assert data["meeting_id"] == "m1"
        assert data["error"] == "boom"
        assert data["error_code"] == "GENERATION_FAILED"

    def test_context_from_event(self):
        event = WebhookPayload.parse(meeting_ended_body(topic="Plan")).event
        ctx = MeetingEndedContext.from_event("e1", event)
        assert ctx.meeting_id == "m1"
        assert ctx.host_user_id == "u1"
        assert ctx.end_time == 1700000000
        assert ctx.topic == "Plan"


# ---------------------------------------------------------------------------
# Signature tests
# ---------------------------------------------------------------------------

class TestSignature:
    def test_valid_signature(self):
        body = b'{"a": 1}'
        headers = signed_headers(body, timestamp=1000)
        reason = validate_lark_signature(
            body,
            headers[SIGNATURE_HEADER],
            headers[TIMESTAMP_HEADER],
            headers[NONCE_HEADER],
            KEY,
            now=1000,
        )
        assert reason is None

    def test_uppercase_signature_accepted(self):
        body = b"{}"
        sig = compute_signature("1000", "n", body, KEY).upper()
        assert validate_lark_signature(body, sig, "1000", "n", KEY, now=1000) is None

    def test_tampered_body_rejected(self):
        body = b'{"a": 1}'
        headers = signed_headers(body, timestamp=1000)
        reason = validate_lark_signature(
            b'{"a": 2}',
            headers[SIGNATURE_HEADER],
            headers[TIMESTAMP_HEADER],
            headers[NONCE_HEADER],
            KEY,
            now=1000,
        )
        assert reason == "Invalid signature"

    def test_wrong_key_rejected(self):
        body = b"{}"
        sig = compute_signature("1000", "n", body, "other-key")
        assert validate_lark_signature(body, sig, "1000", "n", KEY, now=1000) == "Invalid signature"

    def test_expired_timestamp(self):
        body = b"{}"
        sig = compute_signature("1000", "n", body, KEY)
        reason = validate_lark_signature(body, sig, "1000", "n", KEY, now=1301)
        assert reason == "Timestamp expired (age: 301s)"

    def test_boundary_age_accepted(self):
        body = b"{}"
        sig = compute_signature("1000", "n", body, KEY)
        assert validate_lark_signature(body, sig, "1000", "n", KEY, now=1300) is None

    def test_future_timestamp_uses_absolute_age(self):
        body = b"{}"
        sig = compute_signature("2000", "n", body, KEY)
        assert validate_lark_signature(body, sig, "2000", "n", KEY, now=1000) is not None

    @pytest.mark.parametrize(
        "signature, timestamp, nonce, key, reason",
        [
            ("sig", "1000", "n", "", "Encrypt key not configured"),
            ("", "1000", "n", KEY, "Missing signature header"),
            ("sig", "", "n", KEY, "Missing timestamp header"),
            ("sig", "1000", "", KEY, "Missing nonce header"),
            ("sig", "soon", "n", KEY, "Malformed timestamp header"),
        ],
    )
    def test_missing_pieces(self, signature, timestamp, nonce, key, reason):
        assert validate_lark_signature(b"{}", signature, timestamp, nonce, key, now=1000) == reason

    def test_timestamp_age(self):
        assert timestamp_age("100", now=150) == 50
        assert timestamp_age("abc") is None

    def test_verification_token(self):
        assert validate_verification_token(TOKEN, TOKEN)
        assert not validate_verification_token("nope", TOKEN)
        assert not validate_verification_token(TOKEN, "")
        assert not validate_verification_token("", TOKEN)

    def test_non_ascii_token_is_mismatch(self):
        assert not validate_verification_token("é", TOKEN)
        assert not validate_verification_token(TOKEN, "é")

    def test_non_ascii_signature_is_mismatch(self):
        body = b"{}"
        headers = signed_headers(body)
        reason = validate_lark_signature(
            body,
            "签名" + headers[SIGNATURE_HEADER],
            headers[TIMESTAMP_HEADER],
            headers[NONCE_HEADER],
            KEY,
        )
        assert reason == "Invalid signature"


# ---------------------------------------------------------------------------
# Request classification
# ---------------------------------------------------------------------------

def classify(body: bytes, headers=None, **kwargs):
    return process_webhook_request(
        body,
        headers or {},
        encrypt_key=kwargs.get("encrypt_key", KEY),
        verification_token=kwargs.get("verification_token", TOKEN),
        skip_signature_verification=kwargs.get("skip", False),
    )


class TestProcessWebhookRequest:
    def test_challenge_answered(self):
        body = json.dumps(
            {"type": "url_verification", "challenge": "abc", "token": TOKEN}
        ).encode()
        assert classify(body) == ChallengeRequest("abc")

    def test_challenge_does_not_need_signature(self):
        body = json.dumps(
            {"type": "url_verification", "challenge": "abc", "token": TOKEN}
        ).encode()
        assert isinstance(classify(body, encrypt_key=""), ChallengeRequest)

    def test_challenge_with_wrong_token(self):
        body = json.dumps(
            {"type": "url_verification", "challenge": "abc", "token": "wrong"}
        ).encode()
        result = classify(body)
        assert isinstance(result, RejectedRequest)
        assert result.status == 401

    def test_signed_event_accepted(self):
        body = json.dumps(meeting_ended_body()).encode()
        result = classify(body, signed_headers(body))
        assert isinstance(result, EventRequest)
        assert result.payload.header.event_id == "e1"

    def test_unsigned_event_rejected(self):
        body = json.dumps(meeting_ended_body()).encode()
        result = classify(body)
        assert isinstance(result, RejectedRequest)
        assert result.status == 401
        assert result.message == "Missing signature header"

    def test_bad_signature_checked_before_payload(self):
        result = classify(b"not json", {SIGNATURE_HEADER: "x", TIMESTAMP_HEADER: "1", NONCE_HEADER: "n"})
        assert result.status == 401

    def test_signed_invalid_json_is_400(self):
        body = b"not json"
        result = classify(body, signed_headers(body))
        assert isinstance(result, RejectedRequest)
        assert result.status == 400
        assert result.message == "Invalid JSON body"

    def test_signed_invalid_payload_is_400(self):
        data = meeting_ended_body()
        del data["event"]["host_user_id"]
        body = json.dumps(data).encode()
        result = classify(body, signed_headers(body))
        assert result.status == 400
        assert result.message == "Invalid webhook payload"
        assert result.details

    def test_non_object_body_is_400(self):
        body = b"[1, 2]"
        assert classify(body, signed_headers(body)).status == 400

    def test_skip_signature_verification(self):
        body = json.dumps(meeting_ended_body()).encode()
        result = classify(body, skip=True, encrypt_key="")
        assert isinstance(result, EventRequest)

    def test_no_encrypt_key_rejects_events(self):
        body = json.dumps(meeting_ended_body()).encode()
        result = classify(body, signed_headers(body), encrypt_key="")
        assert result.status == 401

    def test_challenge_with_non_ascii_token(self):
        body = json.dumps(
            {"type": "url_verification", "challenge": "abc", "token": "é"}
        ).encode()
        result = classify(body)
        assert isinstance(result, RejectedRequest)
        assert result.status == 401

    def test_non_ascii_signature_header(self):
        body = json.dumps(meeting_ended_body()).encode()
        headers = {**signed_headers(body), SIGNATURE_HEADER: "ü" * 64}
        result = classify(body, headers)
        assert isinstance(result, RejectedRequest)
        assert result.status == 401
        assert result.message == "Invalid signature"

    @pytest.mark.parametrize("event_type", [[], {}, ["a"], 7])
    def test_non_string_event_type(self, event_type):
        body = json.dumps(
            {"header": {"event_id": "e1"}, "event": {"type": event_type}}
        ).encode()
        assert classify(body).status == 401
        signed = classify(body, signed_headers(body))
        assert isinstance(signed, RejectedRequest)
        assert signed.status == 400
        assert classify(body, skip=True).status == 400
