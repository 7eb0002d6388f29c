"""Tests for relaying sync failures to clients."""

from sync_bridge.integrations.matrix.sync_client import SyncResult
from sync_bridge.services.error_classifier import (
    INTERNAL_ERROR,
    ClassifiedError,
    classify,
    error_response,
)
from tests.support import business_error, internal_error, sync_ok, transport_error


class TestClassify:
    def test_business_error_is_relayed_verbatim(self):
        classified = classify(business_error(403, "M_FORBIDDEN", "You are banned"))

        assert classified.status_code == 403
        assert classified.content_type == "application/json"
        assert classified.body == b'{"errcode": "M_FORBIDDEN", "error": "You are banned"}'

    def test_transport_error_is_relayed_verbatim(self):
        classified = classify(transport_error(504, b"<html>Gateway Timeout</html>"))

        assert classified == ClassifiedError(
            504, "text/html", b"<html>Gateway Timeout</html>"
        )

    def test_internal_error_hides_detail(self):
        classified = classify(internal_error("undecodable body: Expecting value"))

        assert classified == INTERNAL_ERROR
        assert classified.status_code == 500
        assert b"Expecting" not in classified.body

    def test_result_without_error_is_internal(self):
        assert classify(sync_ok("s1")) == INTERNAL_ERROR
        assert classify(None) == INTERNAL_ERROR
        assert classify(SyncResult()) == INTERNAL_ERROR


class TestErrorResponse:
    def test_builds_plain_response(self):
        response = error_response(ClassifiedError(429, "application/json", b'{"errcode":"M_LIMIT_EXCEEDED"}'))

        assert response.status_code == 429
        assert response.headers["content-type"] == "application/json"
        assert response.body == b'{"errcode":"M_LIMIT_EXCEEDED"}'

    def test_internal_error_response(self):
        response = error_response(INTERNAL_ERROR)

        assert response.status_code == 500
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert response.body == b"Internal Server Error"

    def test_text_content_type_gets_no_charset(self):
        response = error_response(ClassifiedError(502, "text/html", b"<html>Bad Gateway</html>"))

        assert response.headers["content-type"] == "text/html"
        assert response.headers["content-length"] == "24"

    def test_missing_content_type_is_not_invented(self):
        response = error_response(ClassifiedError(502, "", b""))

        assert "content-type" not in response.headers
