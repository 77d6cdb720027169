# affiliate_system/utils/merkle.py
"""
Merkle commitment of weekly settlements.

Leaf: keccak256(keccak256(abi.encode(uint256 userId, uint256 weekStartUnix, uint256 amount)))
where amount is grandTotal in token base units. Internal nodes hash the
sorted pair (OpenZeppelin MerkleProof); an unpaired node moves up unchanged.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Sequence, Union

from eth_utils import keccak

from affiliate_system.utils.money import money

HexOrBytes = Union[str, bytes]

EMPTY_ROOT = keccak(b"")


def toHex(value: bytes) -> str:
    return "0x" + value.hex()


def fromHex(value: HexOrBytes) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise TypeError(f"Expected hex string or bytes, got {type(value).__name__}")
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def weekStartUnix(weekStart: date) -> int:
    return int(datetime(weekStart.year, weekStart.month, weekStart.day, tzinfo=timezone.utc).timestamp())


def toBaseUnits(amount, decimals: int = 18) -> int:
    return int((money(amount) * (Decimal(10) ** decimals)).to_integral_value())


def encodeLeaf(userId: int, weekStart: date, amount, decimals: int = 18) -> bytes:
    encoded = (
        int(userId).to_bytes(32, "big")
        + weekStartUnix(weekStart).to_bytes(32, "big")
        + toBaseUnits(amount, decimals).to_bytes(32, "big")
    )
    return keccak(keccak(encoded))


def hashPair(a: bytes, b: bytes) -> bytes:
    """Combine two nodes using keccak256 (OpenZeppelin compatible)."""
    return keccak(a + b if a < b else b + a)


class MerkleTree:

    def __init__(self, leaves: Sequence[bytes]):
        self.leaves = sorted(bytes(leaf) for leaf in leaves)
        self._positions = {leaf: index for index, leaf in enumerate(self.leaves)}
        self.layers: List[List[bytes]] = [list(self.leaves)]

        current = self.layers[0]
        while len(current) > 1:
            nextLayer = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    nextLayer.append(hashPair(current[i], current[i + 1]))
                else:
                    nextLayer.append(current[i])
            self.layers.append(nextLayer)
            current = nextLayer

    @property
    def root(self) -> bytes:
        if not self.leaves:
            return EMPTY_ROOT
        return self.layers[-1][0]

    def getProof(self, leaf: bytes) -> List[bytes]:
        index = self._positions.get(bytes(leaf))
        if index is None:
            raise KeyError(f"Leaf {toHex(leaf)} is not in the tree")

        proof = []
        for layer in self.layers[:-1]:
            sibling = index ^ 1
            if sibling < len(layer):
                proof.append(layer[sibling])
            index //= 2
        return proof


def processProof(proof: Sequence[HexOrBytes], leaf: HexOrBytes) -> bytes:
    computed = fromHex(leaf)
    for node in proof:
        computed = hashPair(computed, fromHex(node))
    return computed


def verifyProof(proof: Sequence[HexOrBytes], root: HexOrBytes, leaf: HexOrBytes) -> bool:
    try:
        return processProof(proof, leaf) == fromHex(root)
    except (ValueError, TypeError):
        return False
