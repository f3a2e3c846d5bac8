#!/usr/bin/env python3
"""
Airdrop Configuration

Central place for the tunable deployment parameters of the sharded airdrop:
1. Shard granularity (1 nybble for small/test sets, 2 for production)
2. Duplicate address policy applied while bucketing entries
3. Output locations and network timeouts
"""

import math
from enum import Enum
from dataclasses import dataclass


class DuplicatePolicy(Enum):
    """What the builder does when the same address appears twice."""
    REJECT = "reject"         # Fail the build with MalformedInput
    SUM = "sum"               # Add balances, keep the first record's extra fields
    OVERWRITE = "overwrite"   # Last record wins


@dataclass
class AirdropConfig:
    """Configuration for building and serving an airdrop."""
    shard_nybbles: int = 2              # Production-scale datasets
    test_shard_nybbles: int = 1         # Small/test datasets
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT

    # Layout
    output_dir: str = "airdrops"
    manifest_filename: str = "root.json"

    # Network shard fetcher
    http_timeout: float = 10.0

    # Debugging
    verbose_logging: bool = False


AIRDROP_CONFIG = AirdropConfig()


def get_airdrop_config() -> AirdropConfig:
    """Get current airdrop configuration."""
    return AIRDROP_CONFIG


def set_duplicate_policy(policy):
    """Switch the duplicate address policy (accepts the enum or its value)."""
    AIRDROP_CONFIG.duplicate_policy = DuplicatePolicy(policy)


def set_shard_nybbles(shard_nybbles: int):
    AIRDROP_CONFIG.shard_nybbles = shard_nybbles


def reset_to_default_config():
    """Reset configuration to default values."""
    global AIRDROP_CONFIG
    AIRDROP_CONFIG = AirdropConfig()


def suggest_shard_nybbles(entry_count: int, target_shard_size: int = 5000) -> int:
    """
    Smallest nybble count that keeps the average shard at or below
    target_shard_size entries. Only a suggestion: the chosen value is still
    passed to the builder explicitly and recorded in the manifest.
    """
    if target_shard_size < 1:
        raise ValueError("target_shard_size must be positive")
    shards_needed = math.ceil(entry_count / target_shard_size)
    nybbles = 1
    while 16 ** nybbles < shards_needed:
        nybbles += 1
    return nybbles
