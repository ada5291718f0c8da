"""
Ledger Command & Reconciliation Layer.

- LedgerTransport: HTTP, auth, timeouts, one retry
- TemplateIdentityResolver: квалификация template id с кэшем
- LedgerCommandClient: сабмит команд с idempotency key
- ActiveStateQuery: чтение active-state view
- ContractResolver: подтверждение созданных контрактов с backoff
- RefreshBus: publish/subscribe для read-view
"""

from .active_state import (
    ENVELOPE_PARSERS,
    ActiveStateQuery,
    ParseResult,
    build_query_request,
    flatten_entry,
    normalize_envelope,
)
from .commands import LedgerCommandClient
from .pubsub import CHANNEL_BALANCES, CHANNEL_ORDERS, RefreshBus, Subscription
from .resolver import (
    ContractResolver,
    NaturalKeyMatcher,
    PayloadSubsetMatcher,
    matcher_for,
    pick_latest,
    values_equal,
)
from .template_identity import PackageIdCache, TemplateIdentityResolver
from .transport import LedgerTransport, TokenProvider

__all__ = [
    "ActiveStateQuery",
    "ENVELOPE_PARSERS",
    "ParseResult",
    "build_query_request",
    "flatten_entry",
    "normalize_envelope",
    "LedgerCommandClient",
    "RefreshBus",
    "Subscription",
    "CHANNEL_BALANCES",
    "CHANNEL_ORDERS",
    "ContractResolver",
    "NaturalKeyMatcher",
    "PayloadSubsetMatcher",
    "matcher_for",
    "pick_latest",
    "values_equal",
    "PackageIdCache",
    "TemplateIdentityResolver",
    "LedgerTransport",
    "TokenProvider",
]
