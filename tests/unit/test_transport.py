"""Тесты для LedgerTransport и маппинга ответов в ошибки.

Coverage:
- Bearer-токен из провайдера
- 401 → один повтор с новым токеном, затем AuthError
- сетевой сбой / 503 → один повтор тем же телом, затем LedgerUnavailable
- маппинг 403 / 4xx / Canton error body
"""

import httpx
import pytest

from clob_ledger.config import LedgerSettings
from clob_ledger.core.errors import (
    AuthError,
    LedgerPermissionError,
    LedgerRejection,
    LedgerUnavailable,
    error_from_response,
    extract_error_details,
)
from clob_ledger.ledger.transport import LedgerTransport

SETTINGS = LedgerSettings(base_url="http://ledger.test")


class TokenSequence:
    def __init__(self, *tokens):
        self.tokens = list(tokens)
        self.calls = 0

    async def __call__(self):
        token = self.tokens[min(self.calls, len(self.tokens) - 1)]
        self.calls += 1
        return token


def make_transport(handler, token_provider=None, settings=SETTINGS):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LedgerTransport(settings, token_provider or TokenSequence("t1"), client=client)


class TestRequest:
    """Тесты политики повторов"""

    @pytest.mark.asyncio
    async def test_bearer_header_and_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler)
        data = await transport.request_json("GET", "/v2/packages")

        assert data == {"ok": True}
        assert str(seen[0].url) == "http://ledger.test/v2/packages"
        assert seen[0].headers["Authorization"] == "Bearer t1"

    @pytest.mark.asyncio
    async def test_401_retried_once_with_fresh_token(self):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer expired":
                return httpx.Response(401, json={"code": "UNAUTHENTICATED"})
            return httpx.Response(200, json={})

        tokens = TokenSequence("expired", "fresh")
        transport = make_transport(handler, tokens)
        response = await transport.request("POST", "/x", json={"a": 1})

        assert response.status_code == 200
        assert seen == ["Bearer expired", "Bearer fresh"]

    @pytest.mark.asyncio
    async def test_persistent_401_raises_auth_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="expired")

        transport = make_transport(handler)
        with pytest.raises(AuthError):
            await transport.request("GET", "/v2/packages")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_token(self):
        transport = make_transport(lambda request: httpx.Response(200), TokenSequence(""))
        with pytest.raises(AuthError):
            await transport.request("GET", "/v2/packages")

    @pytest.mark.asyncio
    async def test_transport_error_retried_with_same_body(self):
        bodies = []

        def handler(request):
            bodies.append(request.content)
            if len(bodies) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={})

        transport = make_transport(handler)
        response = await transport.request("POST", "/submit", json={"commandId": "c1"})

        assert response.status_code == 200
        assert len(bodies) == 2
        assert bodies[0] == bodies[1]

    @pytest.mark.asyncio
    async def test_transport_error_exhausted(self):
        def handler(request):
            raise httpx.ReadTimeout("timeout", request=request)

        transport = make_transport(handler)
        with pytest.raises(LedgerUnavailable):
            await transport.request("POST", "/submit", json={})

    @pytest.mark.asyncio
    async def test_503_retried_then_returned(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="busy")

        transport = make_transport(handler)
        response = await transport.request("GET", "/v2/packages")

        assert response.status_code == 503
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_request_json_raises_typed_error(self):
        transport = make_transport(
            lambda request: httpx.Response(400, json={"code": "INVALID_ARGUMENT", "cause": "bad choice"})
        )
        with pytest.raises(LedgerRejection) as exc_info:
            await transport.request_json("POST", "/submit", json={})

        assert exc_info.value.code == "INVALID_ARGUMENT"
        assert exc_info.value.message == "bad choice"

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        async with LedgerTransport(SETTINGS, TokenSequence("t1"), client=client):
            pass
        assert not client.is_closed
        await client.aclose()


class TestErrorMapping:
    """Тесты error_from_response"""

    def _response(self, status, **kwargs):
        return httpx.Response(status, request=httpx.Request("POST", "http://ledger.test/x"), **kwargs)

    def test_403(self):
        error = error_from_response(self._response(403, json={"cause": "not a stakeholder"}), "query")
        assert isinstance(error, LedgerPermissionError)
        assert str(error) == "not a stakeholder"

    def test_401(self):
        assert isinstance(error_from_response(self._response(401), "submit"), AuthError)

    @pytest.mark.parametrize("status", [502, 503, 504])
    def test_network_statuses(self, status):
        assert isinstance(error_from_response(self._response(status), "submit"), LedgerUnavailable)

    def test_ledger_message_verbatim(self):
        body = {
            "code": "DAML_AUTHORIZATION_ERROR",
            "cause": "Interpretation error: missing authorization from 'alice'",
            "correlationId": "abc",
            "errorCategory": 8,
        }
        error = error_from_response(self._response(400, json=body), "submit")

        assert error.message == body["cause"]
        assert error.details["correlationId"] == "abc"
        assert str(error) == f"[400 DAML_AUTHORIZATION_ERROR] {body['cause']}"

    def test_errors_list_joined(self):
        error = error_from_response(self._response(400, json={"errors": ["a", "b"]}), "submit")
        assert error.message == "a; b"
        assert error.errors == ["a", "b"]

    def test_plain_text_body(self):
        error = error_from_response(self._response(500, text="boom"), "submit")
        assert error.message == "boom"
        assert error.status_code == 500

    def test_extract_error_details_ignores_non_object(self):
        assert extract_error_details(["x"]) == {}
        assert extract_error_details({"code": "X", "other": 1}) == {"code": "X"}
