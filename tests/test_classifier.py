import json

import httpx

from sportmatch import classifier as classifier_module
from sportmatch.classifier import ModerationClassifier, parse_decision
from sportmatch.models import ViolationType


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _classifier(handler) -> ModerationClassifier:
    return ModerationClassifier(
        api_url="https://classifier.test/v1/chat/completions",
        api_key="test-key",
        model="test-model",
        timeout_seconds=1,
        transport=httpx.MockTransport(handler),
    )


def test_approved_reply_is_approved_and_request_is_well_formed():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion('{"approved": true, "violation_type": null, "confidence": 0.98}'))

    verdict = _classifier(handler).classify("See you at the court")

    assert verdict.kind == "approved"
    assert verdict.confidence == 0.98
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["messages"][0]["role"] == "system"
    assert "See you at the court" in seen["body"]["messages"][1]["content"]


def test_fenced_rejection_is_parsed():
    content = '```json\n{"approved": false, "reason": "Phone number", "violation_type": "personal_info"}\n```'

    verdict = _classifier(lambda request: httpx.Response(200, json=_completion(content))).classify("0721 123 456")

    assert verdict.kind == "rejected"
    assert verdict.reason == "Phone number"
    assert verdict.violation_type == ViolationType.PERSONAL_INFO


def test_rejection_without_reason_gets_default():
    content = '{"approved": false, "violation_type": "SPAM"}'
    verdict = _classifier(lambda request: httpx.Response(200, json=_completion(content))).classify("buy")
    assert verdict.kind == "rejected"
    assert verdict.reason == "Guideline violation"


def test_rate_limit_is_indeterminate():
    verdict = _classifier(lambda request: httpx.Response(429, text="slow down")).classify("hi")
    assert verdict.kind == "indeterminate"
    assert verdict.reason == classifier_module.RATE_LIMITED_REASON


def test_server_error_is_indeterminate_with_status():
    verdict = _classifier(lambda request: httpx.Response(500, text="boom")).classify("hi")
    assert verdict.kind == "indeterminate"
    assert verdict.reason.startswith("Classifier error: HTTP 500")


def test_malformed_reply_is_indeterminate():
    verdict = _classifier(lambda request: httpx.Response(200, json=_completion("I think it's fine"))).classify("hi")
    assert verdict.kind == "indeterminate"
    assert verdict.reason.startswith("Unparseable classifier response")

    verdict = _classifier(lambda request: httpx.Response(200, json={"choices": []})).classify("hi")
    assert verdict.kind == "indeterminate"


def test_gate_only_violation_types_are_refused_from_classifier():
    content = '{"approved": false, "violation_type": "AUTO_BAN"}'
    verdict = _classifier(lambda request: httpx.Response(200, json=_completion(content))).classify("hi")
    assert verdict.kind == "indeterminate"


def test_transport_error_is_indeterminate():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    verdict = _classifier(handler).classify("hi")

    assert verdict.kind == "indeterminate"
    assert "connection refused" in verdict.reason


def test_missing_api_key_skips_the_call():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_completion('{"approved": true}'))

    unconfigured = ModerationClassifier(api_key="", transport=httpx.MockTransport(handler))

    verdict = unconfigured.classify("hi")

    assert unconfigured.configured is False
    assert verdict.kind == "indeterminate"
    assert verdict.reason == classifier_module.NOT_CONFIGURED_REASON
    assert calls == []


def test_parse_decision_treats_null_strings_as_no_type():
    decision = parse_decision('{"approved": true, "violation_type": "null"}')
    assert decision.approved is True
    assert decision.violation_type is None


def test_long_failure_details_are_truncated():
    verdict = _classifier(lambda request: httpx.Response(503, text="x" * 1000)).classify("hi")
    assert len(verdict.reason) <= classifier_module.MAX_FAILURE_DETAIL + 3
