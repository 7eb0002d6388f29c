"""Tests for the GET /events text-event-stream endpoint.

Covers:
- Event framing with the cursor moved into the id line
- Streaming headers
- Cursor precedence between Last-Event-ID and ?since
- Credential precedence between Authorization and ?access_token
- Upstream rejection relayed as a plain HTTP response
- Method restriction
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from sync_bridge.routes.events import format_sync_event, watch_disconnect
from tests.support import (
    business_error,
    internal_error,
    sync_ok,
    sync_payload,
    transport_error,
)


class TestEventFraming:
    def test_streams_one_event_per_sync(self, make_test_client):
        client, factory = make_test_client(
            [
                sync_ok("s1", rooms={"join": {}}),
                sync_ok("s2", presence={"events": []}),
                transport_error(502),
            ]
        )

        response = client.get("/events", params={"access_token": "tok"})

        assert response.status_code == 200
        assert response.text == (
            "id: s1\nevent: sync\ndata: {\"rooms\":{\"join\":{}}}\n\n"
            "id: s2\nevent: sync\ndata: {\"presence\":{\"events\":[]}}\n\n"
        )

    def test_data_never_contains_cursor(self, make_test_client):
        fields = {f"field_{i}": [i, {"nested": str(i)}] for i in range(5)}
        client, _ = make_test_client([sync_ok("s1", **fields), transport_error(502)])

        response = client.get("/events")

        data_lines = [
            line[len("data: ") :]
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert len(data_lines) == 1
        assert json.loads(data_lines[0]) == fields
        # member text is copied verbatim
        assert data_lines[0] == sync_payload("s1", **fields).replace('"next_batch":"s1",', "")

    def test_streaming_headers(self, make_test_client):
        client, _ = make_test_client([sync_ok("s1"), transport_error(502)])

        response = client.get("/events")

        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_long_polls_chain_cursors(self, make_test_client):
        client, factory = make_test_client(
            [sync_ok("s1"), sync_ok("s2"), transport_error(502)]
        )

        client.get("/events", params={"since": "s0"})

        assert factory.client.calls == [(True, "s0"), (False, "s1"), (False, "s2")]


class TestResumption:
    def test_last_event_id_wins_over_since(self, make_test_client):
        client, factory = make_test_client([sync_ok("s2"), transport_error(502)])

        client.get("/events", params={"since": "B2"}, headers={"Last-Event-ID": "B1"})

        assert factory.client.calls[0] == (True, "B1")

    def test_since_used_without_reconnect_header(self, make_test_client):
        client, factory = make_test_client([sync_ok("s2"), transport_error(502)])

        client.get("/events", params={"since": "B2"})

        assert factory.client.calls[0] == (True, "B2")

    def test_fresh_stream_has_no_cursor(self, make_test_client):
        client, factory = make_test_client([sync_ok("s1"), transport_error(502)])

        client.get("/events")

        assert factory.client.calls[0] == (True, None)


class TestSessionParameters:
    def test_bearer_header_wins_over_parameter(self, make_test_client):
        client, factory = make_test_client([sync_ok("s1"), transport_error(502)])

        client.get(
            "/events",
            params={"access_token": "param-token"},
            headers={"Authorization": "Bearer header-token"},
        )

        assert factory.client.session.access_token == "header-token"

    def test_filter_and_presence_pass_through(self, make_test_client):
        client, factory = make_test_client([sync_ok("s1"), transport_error(502)])

        client.get(
            "/events",
            params={"access_token": "tok", "filter": "7", "presence": "unavailable"},
        )

        session = factory.client.session
        assert session.access_token == "tok"
        assert session.filter == "7"
        assert session.presence == "unavailable"


class TestHandshakeFailure:
    def test_business_error_is_relayed_without_streaming(self, make_test_client):
        client, factory = make_test_client([business_error(403, "M_FORBIDDEN", "Forbidden")])

        response = client.get("/events", params={"access_token": "tok"})

        assert response.status_code == 403
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"errcode": "M_FORBIDDEN", "error": "Forbidden"}
        assert factory.client.calls == [(True, None)]

    def test_transport_error_is_relayed(self, make_test_client):
        client, _ = make_test_client([transport_error(502, b"<html>bad gateway</html>")])

        response = client.get("/events")

        assert response.status_code == 502
        assert response.content == b"<html>bad gateway</html>"
        assert response.headers["content-type"] == "text/html"

    def test_internal_error_is_generic(self, make_test_client):
        client, _ = make_test_client([internal_error("missing next_batch")])

        response = client.get("/events")

        assert response.status_code == 500
        assert response.text == "Internal Server Error"
        assert "next_batch" not in response.text


class TestMethods:
    def test_non_get_is_rejected_without_upstream_call(self, make_test_client):
        client, factory = make_test_client([sync_ok("s1")])

        for method in ("POST", "PUT", "DELETE"):
            response = client.request(method, "/events")
            assert response.status_code == 405

        assert factory.clients == []


class TestEventHelpers:
    def test_multi_line_payload_becomes_several_data_lines(self):
        payload = '{\n"next_batch": "s9",\n"rooms": {}\n}'

        event = format_sync_event("s9", payload)

        assert event == 'id: s9\nevent: sync\ndata: {"rooms":{}}\n\n'

    def test_pretty_printed_value_keeps_its_lines(self):
        payload = '{"next_batch":"s1","rooms":{\n  "join": {}\n}}'

        event = format_sync_event("s1", payload)

        assert event == (
            'id: s1\nevent: sync\ndata: {"rooms":{\ndata:   "join": {}\ndata: }}\n\n'
        )

    @pytest.mark.asyncio
    async def test_watcher_signals_bridge_on_disconnect(self):
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False, False, True])
        bridge = MagicMock()
        bridge.closed = False

        await watch_disconnect(request, bridge, poll_interval=0.001)

        bridge.signal_closed.assert_called_once()
        assert request.is_disconnected.await_count == 3

    @pytest.mark.asyncio
    async def test_watcher_stops_once_bridge_closed(self):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)
        bridge = MagicMock()
        bridge.closed = True

        await watch_disconnect(request, bridge, poll_interval=0.001)

        request.is_disconnected.assert_not_awaited()
        bridge.signal_closed.assert_not_called()

    def test_unicode_line_separators_stay_inside_one_data_line(self):
        payload = '{"next_batch":"s1","rooms":{"body":"a\u2028b\u2029c\u0085d"}}'

        event = format_sync_event("s1", payload)

        data_lines = [
            line[len("data: ") :]
            for line in event.split("\n")
            if line.startswith("data: ")
        ]
        assert len(data_lines) == 1
        # EventSource rejoins data lines with "\n"
        rejoined = "\n".join(data_lines)
        assert json.loads(rejoined) == {"rooms": {"body": "a\u2028b\u2029c\u0085d"}}
        assert rejoined == '{"rooms":{"body":"a\u2028b\u2029c\u0085d"}}'

    def test_carriage_return_line_breaks(self):
        event = format_sync_event("s1", '{"next_batch":"s1","a":[\r\n1,\r2]}')

        assert event == 'id: s1\nevent: sync\ndata: {"a":[\ndata: 1,\ndata: 2]}\n\n'
