"""
LedgerTransport — HTTP транспорт к JSON Ledger API

- Bearer-токен из внешнего провайдера (get_valid_token), токены не логируются
- Timeout на каждый HTTP вызов (httpx.Timeout)
- 401 → один повтор с заново полученным токеном, затем AuthError
- Сетевой сбой / 502-504 → network_retries повторов того же тела запроса
  (тот же commandId для сабмитов), затем LedgerUnavailable
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from clob_ledger.config import LedgerSettings
from clob_ledger.core.errors import (
    NETWORK_LEVEL_STATUSES,
    AuthError,
    LedgerUnavailable,
    error_from_response,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class LedgerTransport:
    """
    Тонкая обёртка над httpx.AsyncClient.

    Клиент можно передать снаружи (тесты используют httpx.MockTransport);
    в этом случае закрывать его — ответственность владельца.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        token_provider: TokenProvider,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self._token_provider = token_provider
        self._timeout = httpx.Timeout(settings.request_timeout_sec)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "LedgerTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._token_provider()
        if not token:
            raise AuthError("Missing credential: token provider returned no token")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        operation: str = "ledger request",
    ) -> httpx.Response:
        """
        Выполнение запроса с политикой повторов.

        Тело запроса не пересобирается между попытками.

        Returns:
            httpx.Response (любой статус, кроме исчерпанных 401 и сетевых сбоев)

        Raises:
            AuthError: 401 после обновления credential
            LedgerUnavailable: сетевой сбой после исчерпания повторов
        """
        network_retries_left = self.settings.network_retries
        auth_refreshed = False
        url = self.url(path)

        while True:
            headers = await self._auth_headers()
            try:
                response = await self._client.request(
                    method, url, json=json, headers=headers, timeout=self._timeout
                )
            except httpx.TransportError as exc:
                if network_retries_left > 0:
                    network_retries_left -= 1
                    logger.warning("%s: transport error (%s), retrying", operation, exc)
                    continue
                raise LedgerUnavailable(f"{operation}: {type(exc).__name__}: {exc}") from exc

            if response.status_code == 401:
                if auth_refreshed:
                    raise error_from_response(response, operation)
                auth_refreshed = True
                logger.info("%s: HTTP 401, retrying with refreshed credential", operation)
                continue

            if response.status_code in NETWORK_LEVEL_STATUSES and network_retries_left > 0:
                network_retries_left -= 1
                logger.warning("%s: HTTP %s, retrying", operation, response.status_code)
                continue

            return response

    async def request_json(self, method: str, path: str, *, json: Any = None, operation: str = "ledger request") -> Any:
        """Запрос + декодирование JSON; non-2xx → типизированная ошибка."""
        response = await self.request(method, path, json=json, operation=operation)
        if response.is_success:
            return response.json() if response.content else {}
        raise error_from_response(response, operation)
