"""
Sharded Merkle Tree Prover

Answers "give me the proof for address X" by loading only the shard that
address belongs to. Shards come from an injectable fetcher (any callable
mapping a shard key to the parsed shard JSON), so the same prover works over
a build directory, an HTTP bucket or an in-memory dict.
"""

import json
import logging
import os
import threading
import requests
from eth_utils import decode_hex, encode_hex

from airdrop_config import get_airdrop_config
from airdrop_errors import AirdropError, EntryNotFound, MalformedInput, ShardNotFound
from basic_data_structure import Manifest, ShardFile, normalize_address, parse_balance, parse_bytes32
from sharded_tree_builder import shard_key_for
from sorted_pair_merkle import SortedPairMerkleTree, hash_leaf, process_proof

logger = logging.getLogger(__name__)


class DirectoryShardFetcher:
    """Reads <shard key>.json from a build directory."""

    def __init__(self, directory):
        self.directory = directory

    def __call__(self, shard_key):
        path = os.path.join(self.directory, f"{shard_key}.json")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ShardNotFound(shard_key, str(e)) from e


class HttpShardFetcher:
    """Fetches <base_url>/<shard key>.json over HTTP."""

    def __init__(self, base_url, session=None, timeout=None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else get_airdrop_config().http_timeout

    def __call__(self, shard_key):
        url = f"{self.base_url}/{shard_key}.json"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise ShardNotFound(shard_key, str(e)) from e


class InMemoryShardFetcher:
    """Serves shards from a dict of shard key -> shard JSON."""

    def __init__(self, shards):
        self.shards = shards
        self.calls = 0

    def __call__(self, shard_key):
        self.calls += 1
        try:
            return self.shards[shard_key]
        except KeyError:
            raise ShardNotFound(shard_key, "unknown shard") from None


class ShardedMerkleTree:
    """
    Read-only view over a built airdrop.

    Shards are fetched lazily on first use and cached for the lifetime of the
    instance. The cache is insert-if-absent under a lock, and each shard has
    its own fetch lock so queries for different shards never wait on each
    other's fetch.
    """

    def __init__(self, fetcher, shard_nybbles, root, total):
        self.fetcher = fetcher
        self.shard_nybbles = shard_nybbles
        self.root = root
        self.total = total
        self.shards = {}
        self.trees = {}
        self._lock = threading.Lock()
        self._shard_locks = {}

    @classmethod
    def from_manifest(cls, manifest, fetcher):
        return cls(fetcher, manifest.shard_nybbles, manifest.root, manifest.total)

    @classmethod
    def from_files(cls, directory, manifest_filename=None):
        if manifest_filename is None:
            manifest_filename = get_airdrop_config().manifest_filename
        manifest = Manifest.load(os.path.join(directory, manifest_filename))
        return cls.from_manifest(manifest, DirectoryShardFetcher(directory))

    @classmethod
    def from_url(cls, base_url, session=None):
        fetcher = HttpShardFetcher(base_url, session=session)
        response = fetcher.session.get(
            f"{fetcher.base_url}/{get_airdrop_config().manifest_filename}", timeout=fetcher.timeout
        )
        response.raise_for_status()
        return cls.from_manifest(Manifest.from_json(response.json()), fetcher)

    @property
    def manifest(self):
        return Manifest(self.root, self.shard_nybbles, self.total)

    def shard_key(self, address):
        return shard_key_for(normalize_address(address), self.shard_nybbles)

    def _shard_lock(self, key):
        with self._lock:
            return self._shard_locks.setdefault(key, threading.Lock())

    def load_shard(self, key):
        """Return (ShardFile, tree) for key, fetching it on first use."""
        cached = self.shards.get(key)
        if cached is not None:
            return cached, self.trees[key]

        with self._shard_lock(key):
            if key in self.shards:
                return self.shards[key], self.trees[key]
            try:
                shard = ShardFile.from_json(self.fetcher(key))
            except ShardNotFound:
                raise
            except (AirdropError, ValueError, KeyError, TypeError) as e:
                raise ShardNotFound(key, str(e)) from e
            tree = SortedPairMerkleTree([entry.leaf for entry in shard.entries.values()])
            with self._lock:
                self.trees.setdefault(key, tree)
                self.shards.setdefault(key, shard)
            logger.debug("Loaded shard %s with %d entries", key, len(shard.entries))
        return self.shards[key], self.trees[key]

    def get_entry(self, address):
        address = normalize_address(address)
        shard, _ = self.load_shard(shard_key_for(address, self.shard_nybbles))
        entry = shard.entries.get(address)
        if entry is None:
            raise EntryNotFound(address)
        return entry

    def get_proof(self, address):
        """
        Return (entry, proof) for address.

        proof is the shard-level sibling path followed by the shard's root-tree
        path, as 0x-prefixed hex strings.
        """
        address = normalize_address(address)
        key = shard_key_for(address, self.shard_nybbles)
        shard, tree = self.load_shard(key)
        entry = shard.entries.get(address)
        if entry is None:
            raise EntryNotFound(address)
        proof = [encode_hex(sibling) for sibling in tree.get_proof(entry.leaf)]
        return entry, proof + shard.proof

    def verify(self, address, balance, proof):
        """Check a claim locally. Returns (valid, index)."""
        try:
            leaf = hash_leaf(normalize_address(address), parse_balance(balance))
            siblings = [parse_bytes32(sibling) for sibling in proof]
        except MalformedInput:
            return False, None
        computed, index = process_proof(leaf, siblings)
        return computed == decode_hex(self.root), index
