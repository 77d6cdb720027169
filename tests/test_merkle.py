"""Tests for the settlement Merkle tree."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from eth_utils import keccak

from affiliate_system.utils.merkle import (
    EMPTY_ROOT, MerkleTree, encodeLeaf, hashPair, processProof, toBaseUnits, toHex, verifyProof, weekStartUnix
)

WEEK = date(2025, 10, 27)


def leaves(count):
    return [encodeLeaf(userId, WEEK, Decimal(100 * userId)) for userId in range(1, count + 1)]


class TestLeafEncoding:

    def test_week_start_is_utc_midnight(self):
        assert weekStartUnix(WEEK) == 1761523200

    def test_amount_in_base_units(self):
        assert toBaseUnits(Decimal("1.50"), 18) == 1_500_000_000_000_000_000
        assert toBaseUnits(Decimal("1.50"), 6) == 1_500_000

    def test_leaf_is_double_hashed_abi_encoding(self):
        encoded = (
            (7).to_bytes(32, "big")
            + (1761523200).to_bytes(32, "big")
            + (250 * 10 ** 18).to_bytes(32, "big")
        )
        assert encodeLeaf(7, WEEK, Decimal("250.00")) == keccak(keccak(encoded))


class TestTree:

    def test_hash_pair_is_order_independent(self):
        a, b = leaves(2)
        assert hashPair(a, b) == hashPair(b, a)

    def test_empty_tree(self):
        tree = MerkleTree([])
        assert tree.root == EMPTY_ROOT == keccak(b"")

    def test_single_leaf_is_its_own_root(self):
        leaf, = leaves(1)
        tree = MerkleTree([leaf])

        assert tree.root == leaf
        assert tree.getProof(leaf) == []

    @pytest.mark.parametrize("count", [2, 5, 8])
    def test_every_leaf_verifies(self, count):
        items = leaves(count)
        tree = MerkleTree(items)
        root = toHex(tree.root)

        for leaf in items:
            proof = [toHex(node) for node in tree.getProof(leaf)]
            assert verifyProof(proof, root, toHex(leaf))

    def test_root_does_not_depend_on_input_order(self):
        items = leaves(5)
        assert MerkleTree(items).root == MerkleTree(list(reversed(items))).root

    def test_odd_leaf_is_promoted(self):
        a, b, c = sorted(leaves(3))
        tree = MerkleTree([a, b, c])

        assert tree.root == hashPair(hashPair(a, b), c)
        assert tree.getProof(c) == [hashPair(a, b)]

    def test_unknown_leaf(self):
        tree = MerkleTree(leaves(3))
        with pytest.raises(KeyError):
            tree.getProof(encodeLeaf(99, WEEK, Decimal("1")))


class TestVerification:

    def test_tampered_amount_is_rejected(self):
        items = leaves(4)
        tree = MerkleTree(items)
        proof = tree.getProof(items[0])

        assert verifyProof(proof, tree.root, items[0])
        assert not verifyProof(proof, tree.root, encodeLeaf(1, WEEK, Decimal("100.01")))

    def test_changed_user_is_rejected(self):
        items = leaves(4)
        tree = MerkleTree(items)
        proof = tree.getProof(items[0])

        assert not verifyProof(proof, tree.root, encodeLeaf(2, WEEK, Decimal("100")))

    def test_changed_week_is_rejected(self):
        items = leaves(4)
        tree = MerkleTree(items)
        proof = tree.getProof(items[0])

        assert not verifyProof(proof, tree.root, encodeLeaf(1, WEEK + timedelta(days=7), Decimal("100")))

    def test_process_proof_rebuilds_root(self):
        items = leaves(6)
        tree = MerkleTree(items)
        assert processProof(tree.getProof(items[3]), items[3]) == tree.root

    def test_malformed_hex_is_rejected(self):
        tree = MerkleTree(leaves(2))
        assert verifyProof(["0xzz"], tree.root, leaves(2)[0]) is False

    @pytest.mark.parametrize("node", [None, 7, 1.5, {"hash": "0x00"}])
    def test_non_hex_proof_node_is_rejected(self, node):
        items = leaves(2)
        tree = MerkleTree(items)
        assert verifyProof([node], tree.root, items[0]) is False
