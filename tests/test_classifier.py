from web3 import Web3

from neurolend_indexer.classifier import (
    EVENT_SIGNATURES,
    EventClassifier,
    signature_topic,
)
from neurolend_indexer.models import UNKNOWN_EVENT, RawLog


def _log(topics: tuple[str, ...]) -> RawLog:
    return RawLog(
        address="0xd9ab5190efa86eb955c5e146ccb30421fabc3405",
        topics=topics,
        data="0x",
        block_number=7039900,
        transaction_hash="0x" + "11" * 32,
        log_index=2,
    )


def test_signature_topic_matches_keccak():
    """Test signature_topic is the 0x-prefixed keccak256 of the signature text."""
    expected = Web3.keccak(text="OwnershipTransferred(address,address)")
    assert signature_topic("OwnershipTransferred(address,address)") == (
        "0x" + bytes(expected).hex()
    )
    assert signature_topic("OwnershipTransferred(address,address)") == (
        "0x8be0079c531659141344cd1fd0a4f28419497f9722a3daafe3b4186f6b6457e0"
    )


def test_classifier_loads_full_table():
    """Test every configured signature is hashed once at construction."""
    classifier = EventClassifier()
    assert len(classifier) == len(EVENT_SIGNATURES) == 16


def test_classifier_returns_mapped_name_for_every_signature():
    """Test each known signature hash maps back to its event name."""
    classifier = EventClassifier()
    for signature, name in EVENT_SIGNATURES.items():
        assert classifier.event_name(_log((signature_topic(signature),))) == name


def test_classifier_matches_uppercase_topic():
    """Test topic comparison ignores hex case."""
    classifier = EventClassifier()
    topic = signature_topic("LoanRepaid(uint256,address,uint256,uint256)")
    assert classifier.event_name(_log(("0x" + topic[2:].upper(),))) == "LoanRepaid"


def test_classifier_unknown_topic_returns_sentinel():
    """Test an unrecognized topic0 yields the Unknown sentinel."""
    classifier = EventClassifier()
    assert classifier.event_name(_log(("0x" + "ff" * 32,))) == UNKNOWN_EVENT


def test_classifier_log_without_topics_is_unknown():
    """Test an anonymous log with no topics is not an error."""
    assert EventClassifier().event_name(_log(())) == UNKNOWN_EVENT


def test_classifier_custom_table():
    """Test a caller-supplied table replaces the default signatures."""
    table = {"Ping(uint256)": "Ping", "Pong(uint256)": "Pong"}
    classifier = EventClassifier(table)
    assert classifier.event_name(_log((signature_topic("Pong(uint256)"),))) == "Pong"


def test_classify_builds_event_record():
    """Test classify copies raw fields and attaches name and timestamp."""
    topic = signature_topic("PriceUpdatePaid(uint256,uint256,uint256)")
    raw = _log((topic, "0x" + "00" * 32))

    event = EventClassifier().classify(raw, block_timestamp=1_730_000_000)

    assert event.event_name == "PriceUpdatePaid"
    assert event.block_timestamp == 1_730_000_000
    assert event.topics == raw.topics
    assert event.dedup_key == (raw.transaction_hash, 2)
