"""Signature-table event classification."""

from __future__ import annotations

from collections.abc import Mapping

import structlog
from web3 import Web3

from .models import UNKNOWN_EVENT, ClassifiedEvent, RawLog

log = structlog.get_logger(__name__)

# Canonical signature -> event name for the NeuroLend contract
EVENT_SIGNATURES: dict[str, str] = {
    "CollateralAdded(uint256,address,uint256,uint256,uint256)": "CollateralAdded",
    "CollateralRemoved(uint256,address,uint256,uint256,uint256)": "CollateralRemoved",
    "LoanAccepted(uint256,address,uint256,uint256)": "LoanAccepted",
    "LoanCreated(uint256,address,address,uint256,uint256,uint256,address,uint256,uint256,uint256,uint256)": "LoanCreated",
    "LoanLiquidated(uint256,address,uint256,uint256,uint256)": "LoanLiquidated",
    "LoanMatched(uint256,uint256,uint256,address,address,uint256,uint256,uint256)": "LoanMatched",
    "LoanOfferCancelled(uint256,address,uint256)": "LoanOfferCancelled",
    "LoanOfferRemoved(uint256,string)": "LoanOfferRemoved",
    "LoanRepaid(uint256,address,uint256,uint256)": "LoanRepaid",
    "LoanRequestCancelled(uint256,address,uint256)": "LoanRequestCancelled",
    "LoanRequestCreated(uint256,address,address,uint256,uint256,uint256,address,uint256,uint256,uint256,uint256)": "LoanRequestCreated",
    "LoanRequestRemoved(uint256,string)": "LoanRequestRemoved",
    "OwnershipTransferred(address,address)": "OwnershipTransferred",
    "PartialRepayment(uint256,address,uint256,uint256,uint256,uint256)": "PartialRepayment",
    "PriceFeedSet(address,bytes32)": "PriceFeedSet",
    "PriceUpdatePaid(uint256,uint256,uint256)": "PriceUpdatePaid",
}


def signature_topic(signature: str) -> str:
    """keccak256 of the canonical signature text as a 0x-prefixed lowercase hex string."""
    return "0x" + bytes(Web3.keccak(text=signature)).hex()


class EventClassifier:
    def __init__(self, signatures: Mapping[str, str] | None = None):
        signatures = EVENT_SIGNATURES if signatures is None else signatures
        # Hashes are computed once; on collision the first entry wins
        self._names_by_topic: dict[str, str] = {}
        for signature, name in signatures.items():
            self._names_by_topic.setdefault(signature_topic(signature), name)
        log.debug("classifier_loaded", signatures=len(self._names_by_topic))

    def __len__(self) -> int:
        return len(self._names_by_topic)

    def event_name(self, raw_log: RawLog) -> str:
        topic0 = raw_log.topic0
        if topic0 is None:
            return UNKNOWN_EVENT
        return self._names_by_topic.get(topic0.lower(), UNKNOWN_EVENT)

    def classify(self, raw_log: RawLog, block_timestamp: int) -> ClassifiedEvent:
        return ClassifiedEvent.from_raw(
            raw_log, self.event_name(raw_log), block_timestamp
        )
