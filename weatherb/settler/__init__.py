from weatherb.settler.cancel import CancelSummary, cancel_eligible_markets
from weatherb.settler.service import SettlementEngine, settlement_dedupe_key

__all__ = [
    "CancelSummary",
    "SettlementEngine",
    "cancel_eligible_markets",
    "settlement_dedupe_key",
]
