import json
from dataclasses import dataclass, field
from eth_utils import decode_hex, is_hex_address, to_checksum_address

from airdrop_errors import MalformedInput
from sorted_pair_merkle import hash_leaf

MAX_UINT256 = 2 ** 256 - 1


def normalize_address(address):
    """Checksum form of a 0x-prefixed 20-byte hex address, in any input case."""
    if not isinstance(address, str) or not address.startswith(("0x", "0X")) or not is_hex_address(address):
        raise MalformedInput(f"Invalid address: {address!r}")
    return to_checksum_address(address.lower())


def parse_balance(value):
    """Parse a uint256 balance from an int or a decimal string."""
    if isinstance(value, bool):
        raise MalformedInput(f"Invalid balance: {value!r}")
    if isinstance(value, int):
        balance = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        balance = int(value.strip())
    else:
        raise MalformedInput(f"Invalid balance: {value!r}")
    if balance < 0 or balance > MAX_UINT256:
        raise MalformedInput(f"Balance out of uint256 range: {value!r}")
    return balance


def parse_bytes32(value):
    """Accept a 32-byte value as bytes or 0x-prefixed hex."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        try:
            raw = decode_hex(value)
        except ValueError as e:
            raise MalformedInput(f"Invalid bytes32: {value!r}") from e
    else:
        raise MalformedInput(f"Invalid bytes32: {value!r}")
    if len(raw) != 32:
        raise MalformedInput(f"Expected 32 bytes, got {len(raw)}")
    return raw


def dump_json(obj):
    """Canonical JSON: sorted keys, compact separators. Equal input gives equal bytes."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class AirdropEntry:
    """One claimable allocation. Extra fields are stored but never hashed."""
    address: str
    balance: int
    extra: dict = field(default_factory=dict, hash=False)

    @classmethod
    def create(cls, address, balance, extra=None):
        extra = dict(extra or {})
        extra.pop("balance", None)
        return cls(normalize_address(address), parse_balance(balance), extra)

    @property
    def leaf(self):
        return hash_leaf(self.address, self.balance)

    def to_json(self):
        data = dict(self.extra)
        data["balance"] = str(self.balance)
        return data

    @classmethod
    def from_json(cls, address, data):
        if not isinstance(data, dict) or "balance" not in data:
            raise MalformedInput(f"Entry for {address} has no balance")
        return cls.create(address, data["balance"], data)

    def __repr__(self):
        return f"AirdropEntry({self.address}, {self.balance})"


@dataclass
class Manifest:
    """The root file: global root, shard granularity and total claimable supply."""
    root: str
    shard_nybbles: int
    total: int

    def to_json(self):
        return {"root": self.root, "shardNybbles": self.shard_nybbles, "total": str(self.total)}

    @classmethod
    def from_json(cls, data):
        try:
            root = data["root"]
            shard_nybbles = data["shardNybbles"]
            total = data["total"]
        except (KeyError, TypeError) as e:
            raise MalformedInput(f"Manifest is missing a field: {e}") from e
        parse_bytes32(root)
        if not isinstance(shard_nybbles, int) or shard_nybbles < 1:
            raise MalformedInput(f"Invalid shardNybbles: {shard_nybbles!r}")
        return cls(root.lower(), shard_nybbles, parse_balance(total))

    def save(self, path):
        with open(path, 'w') as f:
            f.write(dump_json(self.to_json()))

    @classmethod
    def load(cls, path):
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_json(json.load(f))


@dataclass
class ShardFile:
    """Entries of one shard plus the shard's precomputed root-tree proof."""
    entries: dict = field(default_factory=dict)   # checksum address -> AirdropEntry
    proof: list = field(default_factory=list)     # 0x-prefixed sibling hashes

    def to_json(self):
        return {
            "entries": {address: self.entries[address].to_json() for address in sorted(self.entries)},
            "proof": list(self.proof),
        }

    @classmethod
    def from_json(cls, data):
        if not isinstance(data, dict) or not isinstance(data.get("entries"), dict):
            raise MalformedInput("Shard has no entries map")
        proof = data.get("proof", [])
        if not isinstance(proof, list):
            raise MalformedInput("Shard proof must be a list")
        for sibling in proof:
            parse_bytes32(sibling)
        entries = {}
        for address, value in data["entries"].items():
            entry = AirdropEntry.from_json(address, value)
            entries[entry.address] = entry
        return cls(entries, [sibling.lower() for sibling in proof])
