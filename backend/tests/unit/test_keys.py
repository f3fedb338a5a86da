"""Unit tests for the store key layout."""
from metering.keys import consumption_key, credit_balance_key, escape_key_part, ledger_key, pack_marker_key


def test_ledger_key_layout() -> None:
    assert ledger_key("quota", "voice", "user", "u1", "202501") == "quota:voice:user:u1:202501"
    assert credit_balance_key("u1") == "credits:balance:user:u1"


def test_key_parts_escape_separator_and_escape_character() -> None:
    assert escape_key_part("a:b") == "a%3Ab"
    assert escape_key_part("100%") == "100%25"
    # An already-encoded value stays distinct from its decoded form
    assert escape_key_part("a%3Ab") != escape_key_part("a:b")


def test_owner_and_job_ids_with_colons_never_collide() -> None:
    assert consumption_key("user", "u1", "voice:x:y") == "consume:voice:user:u1:x%3Ay"
    assert consumption_key("user", "u1:x", "voice:y") == "consume:voice:user:u1%3Ax:y"
    assert pack_marker_key("u1", "x:y") != pack_marker_key("u1:x", "y")
