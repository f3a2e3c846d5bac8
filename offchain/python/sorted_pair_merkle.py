"""
Sorted-Pair Merkle Tree

Flat Merkle tree with the hashing rules used by the airdrop contracts:
- leaf = keccak256(abi.encodePacked(address, uint256 balance))
- leaves are sorted ascending before the tree is built
- parent = keccak256(min(a, b) + max(a, b)), comparing as big-endian integers
- an unpaired last node is carried up to the next layer unchanged

Because pairs are sorted, a verifier never needs left/right flags: the
sibling list alone recomputes the root.
"""

from bisect import bisect_left
from eth_utils import keccak, to_canonical_address

ZERO_HASH = b'\x00' * 32


def hash_leaf(address, balance):
    """Leaf hash of one (address, balance) pair."""
    return keccak(to_canonical_address(address) + balance.to_bytes(32, 'big'))


def combine_and_hash(a, b):
    """Hash two nodes in ascending order."""
    if a <= b:
        return keccak(a + b)
    return keccak(b + a)


def process_proof(leaf, proof):
    """
    Fold a proof bottom-up starting from leaf.

    Returns (computed_root, index). The index doubles at every step and gains
    a 1 whenever the sibling sorts strictly before the accumulator; it is the
    leaf's position code used to address the claim bitmap.
    """
    computed = leaf
    index = 0
    for sibling in proof:
        index *= 2
        if computed <= sibling:
            computed = keccak(computed + sibling)
        else:
            computed = keccak(sibling + computed)
            index += 1
    return computed, index


def verify_proof(leaf, proof, root):
    computed, _ = process_proof(leaf, proof)
    return computed == root


class SortedPairMerkleTree:
    """Sorted-pair Merkle tree over a list of 32-byte leaves."""

    def __init__(self, leaves):
        self.leaves = sorted(leaves)
        self.layers = []
        self._build()

    def _build(self):
        if not self.leaves:
            return

        nodes = list(self.leaves)
        self.layers.append(nodes)
        while len(nodes) > 1:
            parents = []
            for i in range(0, len(nodes), 2):
                if i + 1 == len(nodes):
                    # Odd node out, promoted as-is
                    parents.append(nodes[i])
                else:
                    parents.append(combine_and_hash(nodes[i], nodes[i + 1]))
            self.layers.append(parents)
            nodes = parents

    @property
    def root(self):
        if not self.layers:
            return ZERO_HASH
        return self.layers[-1][0]

    def __len__(self):
        return len(self.leaves)

    def __contains__(self, leaf):
        return self._index_of(leaf) is not None

    def _index_of(self, leaf):
        i = bisect_left(self.leaves, leaf)
        if i < len(self.leaves) and self.leaves[i] == leaf:
            return i
        return None

    def get_proof(self, leaf):
        """Sibling hashes from leaf level up to (excluding) the root, or None if leaf is absent."""
        index = self._index_of(leaf)
        if index is None:
            return None

        proof = []
        for layer in self.layers[:-1]:
            sibling_index = index - 1 if index % 2 else index + 1
            if sibling_index < len(layer):
                proof.append(layer[sibling_index])
            index //= 2
        return proof
