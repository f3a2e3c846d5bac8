"""
Sharded Tree Builder

Builds the two-level airdrop tree:
1. Entries are bucketed into shards by the lower-cased hex prefix of their address
2. Each shard gets its own sorted-pair Merkle tree
3. A root tree is built over the shard roots; its root is the on-chain value
4. Every shard stores its proof within the root tree, so the prover never
   has to rebuild the root tree

Output is deterministic: the same entry set (in any order) always produces
byte-identical manifest and shard files.
"""

import logging
import os
from collections import defaultdict
from eth_utils import encode_hex

from airdrop_config import DuplicatePolicy, get_airdrop_config
from airdrop_errors import MalformedInput
from basic_data_structure import AirdropEntry, Manifest, ShardFile, dump_json
from sorted_pair_merkle import SortedPairMerkleTree

logger = logging.getLogger(__name__)

MAX_SHARD_NYBBLES = 40


def shard_key_for(address, shard_nybbles):
    """Shard key of a normalized address: its first hex nybbles, lower-cased."""
    return address[2:2 + shard_nybbles].lower()


class ShardedTreeBuilder:
    """
    Builds the shard trees and the root tree over their roots.

    entries: iterable of (address, entry) pairs where entry is an AirdropEntry,
    a dict with a 'balance' key (other keys are kept as extra fields) or a bare
    balance.
    """

    def __init__(self, entries, shard_nybbles, duplicate_policy=None):
        if not isinstance(shard_nybbles, int) or not 1 <= shard_nybbles <= MAX_SHARD_NYBBLES:
            raise MalformedInput(f"shard_nybbles must be between 1 and {MAX_SHARD_NYBBLES}, got {shard_nybbles!r}")
        if duplicate_policy is None:
            duplicate_policy = get_airdrop_config().duplicate_policy
        self.shard_nybbles = shard_nybbles
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self.entries = self._collect_entries(entries)

        self.shards = {}         # shard key -> ShardFile
        self.shard_trees = {}    # shard key -> SortedPairMerkleTree
        self.root_tree = None
        self.manifest = None

    def _collect_entries(self, raw_entries):
        collected = {}
        for address, value in raw_entries:
            entry = self._to_entry(address, value)
            existing = collected.get(entry.address)
            if existing is None:
                collected[entry.address] = entry
            elif self.duplicate_policy is DuplicatePolicy.REJECT:
                raise MalformedInput(f"Duplicate address {entry.address}")
            elif self.duplicate_policy is DuplicatePolicy.SUM:
                collected[entry.address] = AirdropEntry.create(
                    entry.address, existing.balance + entry.balance, existing.extra
                )
            else:
                collected[entry.address] = entry
        return collected

    @staticmethod
    def _to_entry(address, value):
        if isinstance(value, AirdropEntry):
            return AirdropEntry.create(address, value.balance, value.extra)
        if isinstance(value, dict):
            if "balance" not in value:
                raise MalformedInput(f"Entry for {address} has no balance")
            return AirdropEntry.create(address, value["balance"], value)
        return AirdropEntry.create(address, value)

    def build(self):
        """Build every shard tree and the root tree. Returns the Manifest."""
        buckets = defaultdict(dict)
        for address, entry in self.entries.items():
            buckets[shard_key_for(address, self.shard_nybbles)][address] = entry

        shard_roots = {}
        for key in sorted(buckets):
            tree = SortedPairMerkleTree([entry.leaf for entry in buckets[key].values()])
            self.shard_trees[key] = tree
            shard_roots[key] = tree.root
            logger.debug("Shard %s: %d entries -> root %s", key, len(tree), encode_hex(tree.root))

        self.root_tree = SortedPairMerkleTree(shard_roots.values())

        for key, entries in buckets.items():
            proof = self.root_tree.get_proof(shard_roots[key])
            self.shards[key] = ShardFile(entries, [encode_hex(sibling) for sibling in proof])

        total = sum(entry.balance for entry in self.entries.values())
        self.manifest = Manifest(encode_hex(self.root_tree.root), self.shard_nybbles, total)
        logger.info(
            "Built airdrop tree: %d entries in %d shards, root %s",
            len(self.entries), len(self.shards), self.manifest.root,
        )
        return self.manifest

    def write(self, directory, manifest_filename=None):
        """Persist the manifest and one <shard key>.json per shard."""
        if self.manifest is None:
            self.build()
        if manifest_filename is None:
            manifest_filename = get_airdrop_config().manifest_filename

        os.makedirs(directory, exist_ok=True)
        self._remove_stale_shards(directory)
        self.manifest.save(os.path.join(directory, manifest_filename))
        for key, shard in self.shards.items():
            with open(os.path.join(directory, f"{key}.json"), 'w') as f:
                f.write(dump_json(shard.to_json()))
        logger.info("Wrote manifest and %d shard files to %s", len(self.shards), directory)
        return self.manifest

    def _remove_stale_shards(self, directory):
        """Delete shard files left by an earlier build that this build does not produce."""
        for name in os.listdir(directory):
            key, ext = os.path.splitext(name)
            if ext != ".json" or key in self.shards or not _is_shard_key(key):
                continue
            os.remove(os.path.join(directory, name))
            logger.info("Removed stale shard file %s", name)


def _is_shard_key(name):
    return 0 < len(name) <= MAX_SHARD_NYBBLES and all(c in "0123456789abcdef" for c in name)


def build_airdrop(entries, shard_nybbles, directory):
    """Build the sharded tree for entries and write it to directory."""
    builder = ShardedTreeBuilder(entries, shard_nybbles)
    builder.build()
    return builder.write(directory)
