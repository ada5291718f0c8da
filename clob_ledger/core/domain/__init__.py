"""
Domain models and value objects.

Contains ledger entities (Party, Contract, Commands) and settlement views
(Holding, Allocation, Order, OrderRequest).
"""

from clob_ledger.core.domain.command import (
    Command,
    CreateCommand,
    ExerciseCommand,
    Submission,
    SubmissionResult,
    new_command_id,
)
from clob_ledger.core.domain.contract import Contract
from clob_ledger.core.domain.party import (
    Party,
    fingerprint_of,
    parse_party,
    party_from_public_key,
)
from clob_ledger.core.domain.settlement import (
    Allocation,
    Holding,
    Order,
    OrderMode,
    OrderRequest,
    OrderSide,
    TradingPair,
    decode_optional,
    encode_optional,
    holdings_from_contract,
    normalize_daml_map,
    to_decimal,
)
from clob_ledger.core.domain.template import (
    is_qualified,
    package_id_of,
    qualify,
    same_template,
    short_form,
)

__all__ = [
    # Party
    "Party",
    "parse_party",
    "fingerprint_of",
    "party_from_public_key",
    # Template identity
    "is_qualified",
    "package_id_of",
    "qualify",
    "same_template",
    "short_form",
    # Contract
    "Contract",
    # Commands
    "Command",
    "CreateCommand",
    "ExerciseCommand",
    "Submission",
    "SubmissionResult",
    "new_command_id",
    # Settlement
    "Allocation",
    "Holding",
    "Order",
    "OrderMode",
    "OrderRequest",
    "OrderSide",
    "TradingPair",
    "decode_optional",
    "encode_optional",
    "holdings_from_contract",
    "normalize_daml_map",
    "to_decimal",
]
