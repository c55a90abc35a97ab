"""
Unit tests for HashManager

Tests:
- Deterministic hashing (key order, normalization)
- Excluded bookkeeping fields
- Change detection
"""

import pytest

from catalogsync.sync.hash_manager import EXCLUDED_FIELDS, HashManager


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def manager():
    return HashManager()


@pytest.fixture
def payload():
    """Normalized artikel payload"""
    return {
        "model": "A-100",
        "name": "Schraube M6",
        "price": 12.5,
        "stock": 40,
        "online": 1,
        "ean": "4001234567890",
    }


# ============================================================================
# TEST: generate_hash
# ============================================================================


class TestGenerateHash:
    """Tests for deterministic hashing"""

    def test_hash_is_sha256_hex(self, manager, payload):
        digest = manager.generate_hash(payload)
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    def test_key_order_does_not_matter(self, manager, payload):
        reordered = dict(reversed(list(payload.items())))
        assert manager.generate_hash(payload) == manager.generate_hash(reordered)

    def test_null_and_empty_string_hash_alike(self, manager):
        assert manager.generate_hash({"note": None}) == manager.generate_hash({"note": ""})

    def test_whitespace_is_trimmed(self, manager):
        assert manager.generate_hash({"name": "  Schraube "}) == manager.generate_hash({"name": "Schraube"})

    def test_floats_rounded_to_two_places(self, manager):
        assert manager.generate_hash({"price": 12.501}) == manager.generate_hash({"price": 12.5})
        assert manager.generate_hash({"price": 12.5}) != manager.generate_hash({"price": 12.51})

    def test_bools_hash_like_ints(self, manager):
        assert manager.generate_hash({"online": True}) == manager.generate_hash({"online": 1})

    def test_value_change_changes_hash(self, manager, payload):
        changed = dict(payload, name="Schraube M8")
        assert manager.generate_hash(payload) != manager.generate_hash(changed)

    def test_nested_values(self, manager):
        first = {"attrs": {"b": 2, "a": [1, None]}}
        second = {"attrs": {"a": [1, ""], "b": 2}}
        assert manager.generate_hash(first) == manager.generate_hash(second)


# ============================================================================
# TEST: Excluded fields
# ============================================================================


class TestExcludedFields:
    """Tests for bookkeeping fields left out of the hash"""

    def test_default_exclusions(self):
        for name in ("id", "update", "last_update", "last_imported_hash", "last_seen_hash"):
            assert name in EXCLUDED_FIELDS

    def test_bookkeeping_columns_do_not_affect_hash(self, manager, payload):
        with_bookkeeping = dict(
            payload,
            id=17,
            update=1,
            last_update="2024-05-01 10:00:00",
            last_imported_hash="abc",
            last_seen_hash="def",
        )
        assert manager.hash_payload(payload) == manager.hash_payload(with_bookkeeping)

    def test_custom_exclusions(self, payload):
        manager = HashManager({"stock"})
        assert manager.hash_payload(payload) == manager.hash_payload(dict(payload, stock=0))
        assert manager.hash_payload(payload) != manager.hash_payload(dict(payload, price=1.0))


# ============================================================================
# TEST: has_changed
# ============================================================================


class TestHasChanged:
    """Tests for change detection"""

    @pytest.mark.parametrize("old_hash", [None, ""])
    def test_missing_old_hash_is_a_change(self, old_hash):
        assert HashManager.has_changed(old_hash, "abc") is True

    def test_same_hash_is_unchanged(self):
        assert HashManager.has_changed("abc", "abc") is False

    def test_different_hash_is_changed(self):
        assert HashManager.has_changed("abc", "abd") is True
