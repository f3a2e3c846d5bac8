#!/usr/bin/env python3
"""
Merkle Airdrop Verifier

Off-chain counterpart of the MerkleAirdrop contract. A claim recomputes the
root from (recipient, amount, proof), reserves the leaf's position index in
the claim bitmap, moves the tokens and releases the index again if the
payout fails.

Key Features:
- Claim state lives in an explicit ClaimBitmap store passed to the verifier
- The bitmap tests and sets an index under its own lock before any tokens
  move, so verifiers sharing one bitmap still pay each leaf once
- Anyone may submit a claim; tokens always go to the proven recipient
- Tokens come from the airdrop's own balance or, when a reserve holder is
  given, from that holder through an allowance (both contract variants)
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from eth_utils import encode_hex

from airdrop_errors import (
    AlreadyClaimed,
    ClaimPeriodActive,
    ClaimPeriodEnded,
    InsufficientReserve,
    InvalidProof,
    MalformedInput,
    RootAlreadySet,
    Unauthorized,
)
from basic_data_structure import normalize_address, parse_balance, parse_bytes32
from sorted_pair_merkle import hash_leaf, process_proof

logger = logging.getLogger(__name__)


class ClaimBitmap:
    """Growable claim bitmap packed into 256-bit words, like mapping(uint256 => uint256)."""

    WORD_BITS = 256

    def __init__(self, words=None):
        self._words = dict(words or {})
        self._lock = threading.Lock()

    def is_claimed(self, index):
        word, bit = divmod(index, self.WORD_BITS)
        with self._lock:
            return bool((self._words.get(word, 0) >> bit) & 1)

    def set_claimed(self, index):
        """Set the bit for index. Raises AlreadyClaimed if it was already set."""
        word, bit = divmod(index, self.WORD_BITS)
        mask = 1 << bit
        with self._lock:
            current = self._words.get(word, 0)
            if current & mask:
                raise AlreadyClaimed(index)
            self._words[word] = current | mask

    def clear(self, index):
        """Unset the bit for index, used to roll back a claim whose payout failed."""
        word, bit = divmod(index, self.WORD_BITS)
        with self._lock:
            self._words[word] = self._words.get(word, 0) & ~(1 << bit)

    def claimed_count(self):
        with self._lock:
            return sum(bin(word).count('1') for word in self._words.values())

    def to_json(self):
        with self._lock:
            return {"words": {str(word): hex(value) for word, value in sorted(self._words.items())}}

    @classmethod
    def from_json(cls, data):
        return cls({int(word): int(value, 16) for word, value in data.get("words", {}).items()})

    def save(self, path):
        with open(path, 'w') as f:
            json.dump(self.to_json(), f, indent=4)

    @classmethod
    def load(cls, path):
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_json(json.load(f))


class TokenLedger:
    """Minimal ERC-20 style balances and allowances used as the token collaborator."""

    def __init__(self, balances=None):
        self.balances = {normalize_address(a): parse_balance(v) for a, v in (balances or {}).items()}
        self.allowances = {}
        self._lock = threading.Lock()

    def balance_of(self, account):
        return self.balances.get(normalize_address(account), 0)

    def allowance(self, owner, spender):
        return self.allowances.get((normalize_address(owner), normalize_address(spender)), 0)

    def approve(self, owner, spender, amount):
        with self._lock:
            self.allowances[(normalize_address(owner), normalize_address(spender))] = parse_balance(amount)

    def transfer(self, sender, recipient, amount):
        sender, recipient = normalize_address(sender), normalize_address(recipient)
        with self._lock:
            self._move(sender, recipient, amount)

    def transfer_from(self, spender, owner, recipient, amount):
        spender, owner, recipient = map(normalize_address, (spender, owner, recipient))
        with self._lock:
            allowed = self.allowances.get((owner, spender), 0)
            if allowed < amount:
                raise InsufficientReserve(owner, amount, allowed)
            self._move(owner, recipient, amount)
            self.allowances[(owner, spender)] = allowed - amount

    def _move(self, sender, recipient, amount):
        available = self.balances.get(sender, 0)
        if available < amount:
            raise InsufficientReserve(sender, amount, available)
        self.balances[sender] = available - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount


@dataclass(frozen=True)
class Claim:
    """Event emitted for every successful claim."""
    claimant: str
    amount: int
    index: int


class MerkleAirdrop:
    """Verifies merkle claims against a single root and pays each leaf out once."""

    def __init__(self, address, owner, token, merkle_root=None, reserve_holder=None,
                 claim_bitmap=None, claim_period_ends=None, clock=time.time):
        self.address = normalize_address(address)
        self.owner = normalize_address(owner)
        self.token = token
        self.reserve_holder = normalize_address(reserve_holder) if reserve_holder else None
        self.claim_bitmap = claim_bitmap if claim_bitmap is not None else ClaimBitmap()
        self.claim_period_ends = claim_period_ends
        self.clock = clock
        self.claims = []
        self._merkle_root = parse_bytes32(merkle_root) if merkle_root is not None else None
        self._lock = threading.Lock()

    @property
    def merkle_root(self):
        return encode_hex(self._merkle_root) if self._merkle_root is not None else None

    def set_merkle_root(self, caller, merkle_root):
        """Owner-only, one-time root setter."""
        if normalize_address(caller) != self.owner:
            raise Unauthorized("Caller is not the owner")
        with self._lock:
            if self._merkle_root is not None:
                raise RootAlreadySet("Merkle root already set")
            self._merkle_root = parse_bytes32(merkle_root)
        logger.info("Merkle root set to %s", self.merkle_root)

    def is_claimed(self, index):
        return self.claim_bitmap.is_claimed(index)

    def claim_tokens(self, recipient, amount, merkle_proof):
        """
        Claim amount tokens for recipient.

        Raises InvalidProof or AlreadyClaimed without touching any state.
        InsufficientReserve from the token ledger propagates and leaves the
        index unclaimed.
        """
        if self.claim_period_ends is not None and self.clock() >= self.claim_period_ends:
            raise ClaimPeriodEnded("Claim period has ended")
        try:
            recipient = normalize_address(recipient)
            amount = parse_balance(amount)
            proof = [parse_bytes32(sibling) for sibling in merkle_proof]
        except MalformedInput as e:
            raise InvalidProof() from e

        with self._lock:
            if self._merkle_root is None:
                raise InvalidProof("Merkle root not set")
            computed, index = process_proof(hash_leaf(recipient, amount), proof)
            if computed != self._merkle_root:
                raise InvalidProof()

            # Test-and-set on the shared bitmap; raises AlreadyClaimed before any transfer
            self.claim_bitmap.set_claimed(index)
            try:
                if self.reserve_holder is None:
                    self.token.transfer(self.address, recipient, amount)
                else:
                    self.token.transfer_from(self.address, self.reserve_holder, recipient, amount)
            except Exception:
                self.claim_bitmap.clear(index)
                raise

            claim = Claim(recipient, amount, index)
            self.claims.append(claim)
        logger.info("Claim: %s claimed %d tokens (index %d)", recipient, amount, index)
        return claim

    def sweep(self, caller, dest):
        """
        After the claim period, send whatever is left for claims to dest.

        Without a reserve holder that is the airdrop's own balance. With one,
        it is the remaining allowance, capped at the holder's balance, moved
        out of the holder's account.
        """
        if normalize_address(caller) != self.owner:
            raise Unauthorized("Caller is not the owner")
        if self.claim_period_ends is None or self.clock() < self.claim_period_ends:
            raise ClaimPeriodActive("Claim period not yet ended")
        with self._lock:
            if self.reserve_holder is None:
                remaining = self.token.balance_of(self.address)
                if remaining:
                    self.token.transfer(self.address, dest, remaining)
            else:
                remaining = min(self.token.allowance(self.reserve_holder, self.address),
                                self.token.balance_of(self.reserve_holder))
                if remaining:
                    self.token.transfer_from(self.address, self.reserve_holder, dest, remaining)
        logger.info("Swept %d unclaimed tokens to %s", remaining, dest)
        return remaining
