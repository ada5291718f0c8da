"""
TemplateIdentityResolver — квалификация коротких template id

`Module:Type` → `<packageId>:Module:Type`.

Стратегии получения package id (по порядку):
1. packages endpoint: последний (самый свежий) package id из {packageIds: [...]}
2. active-state запрос известных fallback templates, package id извлекается
   из полностью квалифицированного templateId в ответе
3. ничего не найдено → короткая форма возвращается как есть, downstream вызов
   упадёт с типизированной ошибкой (ошибка квалификации не проглатывается молча)

Кэш (PackageIdCache) — явный инжектируемый объект, не module-level singleton.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Sequence

from jsonschema import ValidationError as SchemaValidationError

from clob_ledger.config import FRONTIER_OFFSET
from clob_ledger.core.contracts import validate_packages_response
from clob_ledger.core.domain.template import is_qualified, package_id_of, qualify
from clob_ledger.core.errors import LedgerClientError, AuthError
from clob_ledger.ledger.active_state import build_query_request, fetch_active
from clob_ledger.ledger.transport import LedgerTransport

logger = logging.getLogger(__name__)


# =============================================================================
# CACHE
# =============================================================================


class PackageIdCache:
    """
    Кэш package id с окном валидности.

    ttl_sec=None — валиден всё время жизни процесса.
    invalidate() помечает значение устаревшим, но не удаляет его:
    читатели продолжают пользоваться stale значением, пока идёт refresh.
    """

    def __init__(self, ttl_sec: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._package_id: Optional[str] = None
        self._stored_at: float = 0.0
        self._stale = False

    @property
    def package_id(self) -> Optional[str]:
        return self._package_id

    def is_fresh(self) -> bool:
        if self._package_id is None or self._stale:
            return False
        if self.ttl_sec is None:
            return True
        return (self._clock() - self._stored_at) < self.ttl_sec

    def store(self, package_id: str) -> None:
        self._package_id = package_id
        self._stored_at = self._clock()
        self._stale = False

    def invalidate(self) -> None:
        self._stale = True

    def clear(self) -> None:
        self._package_id = None
        self._stale = False


# =============================================================================
# RESOLVER
# =============================================================================


class TemplateIdentityResolver:
    """
    Квалификация template id с кэшированием.

    Конкурентность:
    - первая загрузка single-flight: параллельные вызовы делят один lookup
    - при наличии значения читатели не ждут refresh: stale значение
      возвращается сразу, refresh идёт в фоне
    - неудачный refresh сохраняет stale значение
    """

    def __init__(
        self,
        transport: LedgerTransport,
        cache: Optional[PackageIdCache] = None,
        fallback_party: Optional[str] = None,
        fallback_templates: Optional[Sequence[str]] = None,
    ):
        self.transport = transport
        self.cache = cache if cache is not None else PackageIdCache()
        self.fallback_party = fallback_party if fallback_party is not None else transport.settings.operator_party
        self.fallback_templates = tuple(
            fallback_templates if fallback_templates is not None else transport.settings.fallback_templates
        )
        self._inflight: Optional[asyncio.Task] = None
        self.lookups = 0

    async def qualify(self, template_id: str) -> str:
        """
        Полностью квалифицированный template id.

        Returns:
            `<packageId>:Module:Type`, либо короткая форма если package id неизвестен
        """
        if is_qualified(template_id):
            return template_id

        package_id = await self._current_package_id()
        if package_id is None:
            logger.warning(
                "Package id unavailable, submitting unqualified template id %s", template_id
            )
            return template_id
        return qualify(template_id, package_id)

    async def refresh(self) -> Optional[str]:
        """Принудительный reload (например, после повторяющихся ошибок идентичности)."""
        self.cache.invalidate()
        return await self._load_shared()

    def invalidate(self) -> None:
        self.cache.invalidate()

    async def _current_package_id(self) -> Optional[str]:
        cached = self.cache.package_id
        if cached is not None:
            if not self.cache.is_fresh():
                self._start_background_refresh()
            return cached
        return await self._load_shared()

    def _start_background_refresh(self) -> None:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._load())
            self._inflight.add_done_callback(_log_background_failure)

    async def _load_shared(self) -> Optional[str]:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._load())
        # shield: отмена одного читателя не отменяет общий lookup
        return await asyncio.shield(self._inflight)

    async def _load(self) -> Optional[str]:
        self.lookups += 1
        package_id = await self._from_packages_endpoint()
        if package_id is None:
            package_id = await self._from_fallback_contracts()
        if package_id is None:
            logger.warning("Package id discovery failed (packages endpoint and fallback templates)")
            return self.cache.package_id
        if package_id != self.cache.package_id:
            logger.info("Using package id %s", package_id)
        self.cache.store(package_id)
        return package_id

    async def _from_packages_endpoint(self) -> Optional[str]:
        try:
            data = await self.transport.request_json(
                "GET", self.transport.settings.packages_path, operation="packages"
            )
            validate_packages_response(data)
        except AuthError:
            raise
        except (LedgerClientError, SchemaValidationError, ValueError) as exc:
            logger.info("Packages endpoint unavailable: %s", exc)
            return None

        package_ids = data["packageIds"]
        if not package_ids:
            logger.info("Packages endpoint returned no package ids")
            return None
        return package_ids[-1]

    async def _from_fallback_contracts(self) -> Optional[str]:
        if not self.fallback_party:
            logger.info("No fallback party configured, skipping contract-based package discovery")
            return None

        for template_id in self.fallback_templates:
            body = build_query_request(
                self.fallback_party, template_ids=[template_id], at_offset=FRONTIER_OFFSET
            )
            try:
                contracts = await fetch_active(self.transport, body, operation=f"package discovery via {template_id}")
            except AuthError:
                raise
            except LedgerClientError as exc:
                logger.info("Fallback template %s not queryable: %s", template_id, exc)
                continue
            for contract in contracts:
                package_id = package_id_of(contract.template_id)
                if package_id:
                    return package_id
        return None


def _log_background_failure(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background package id refresh failed: %s", exc)
