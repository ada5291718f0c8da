"""
ClobLedgerClient — сборка слоёв клиента из ClientConfig

Один transport, один TemplateIdentityResolver (общий кэш package id)
и один RefreshBus на процесс.
"""

import asyncio
from typing import Optional, Sequence

import httpx

from clob_ledger.config import FRONTIER_OFFSET, ClientConfig
from clob_ledger.core.domain.contract import Contract
from clob_ledger.core.domain.settlement import OrderRequest
from clob_ledger.ledger.active_state import ActiveStateQuery
from clob_ledger.ledger.commands import LedgerCommandClient
from clob_ledger.ledger.pubsub import RefreshBus
from clob_ledger.ledger.resolver import ContractResolver, Sleep
from clob_ledger.ledger.template_identity import PackageIdCache, TemplateIdentityResolver
from clob_ledger.ledger.transport import LedgerTransport, TokenProvider
from clob_ledger.settlement.coordinator import AllocationOrderCoordinator, CancelResult, SettlementResult


class ClobLedgerClient:
    def __init__(
        self,
        config: ClientConfig,
        token_provider: TokenProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        cache: Optional[PackageIdCache] = None,
        bus: Optional[RefreshBus] = None,
    ):
        self.config = config
        self.transport = LedgerTransport(config.ledger, token_provider, client=http_client)
        self.identity = TemplateIdentityResolver(self.transport, cache=cache)
        self.commands = LedgerCommandClient(self.transport, identity=self.identity)
        self.query = ActiveStateQuery(self.transport, identity=self.identity)
        self.resolver = ContractResolver(self.query, config.resolver, sleep=sleep)
        self.bus = bus if bus is not None else RefreshBus()
        self.coordinator = AllocationOrderCoordinator(
            self.commands,
            self.query,
            self.resolver,
            config=config.settlement,
            operator_party=config.ledger.operator_party,
            bus=self.bus,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "ClobLedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def place_order(self, request: OrderRequest) -> SettlementResult:
        return await self.coordinator.place_order(request)

    async def cancel_order(self, order_contract_id: str, party: str) -> CancelResult:
        return await self.coordinator.cancel_order(order_contract_id, party)

    async def active_contracts(
        self,
        party: str,
        template_ids: Optional[Sequence[str]] = None,
        contract_ids: Optional[Sequence[str]] = None,
        at_offset: str = FRONTIER_OFFSET,
    ) -> list[Contract]:
        """Read-path для UI: активные контракты, видимые party."""
        return await self.query.query(
            party, template_ids=template_ids, contract_ids=contract_ids, at_offset=at_offset
        )
