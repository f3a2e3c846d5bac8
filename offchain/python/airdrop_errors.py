"""
Airdrop Error Taxonomy

Every failure raised by the tree builder, the prover and the claim verifier
derives from AirdropError so callers can catch the whole family at once.
Nothing here retries: the caller decides what to do with each failure.
Only ShardNotFound is worth retrying (once the shard file is available).
"""


class AirdropError(Exception):
    """Base class for all airdrop failures."""


class MalformedInput(AirdropError, ValueError):
    """Entry list (or a single entry) is unusable for a build run."""


class ShardNotFound(AirdropError):
    """A shard file is missing or could not be parsed."""

    def __init__(self, shard_key, reason=""):
        self.shard_key = shard_key
        self.reason = reason
        message = f"Shard '{shard_key}' not available"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class EntryNotFound(AirdropError, LookupError):
    """Address is not part of the airdrop."""

    def __init__(self, address):
        self.address = address
        super().__init__(f"No airdrop entry for {address}")


class InvalidProof(AirdropError):
    """Recomputed root does not match the stored root."""

    def __init__(self, message="Valid proof required"):
        super().__init__(message)


class AlreadyClaimed(AirdropError):
    """Claim bit for this leaf index is already set."""

    def __init__(self, index):
        self.index = index
        super().__init__(f"Tokens already claimed (index {index})")


class InsufficientReserve(AirdropError):
    """Token source holds (or allows) less than the requested amount."""

    def __init__(self, holder, requested, available):
        self.holder = holder
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient reserve at {holder}: requested {requested}, available {available}"
        )


class Unauthorized(AirdropError):
    """Caller is not the owner of the airdrop."""


class RootAlreadySet(AirdropError):
    """The merkle root can only be set once."""


class ClaimPeriodEnded(AirdropError):
    """Claims are closed."""


class ClaimPeriodActive(AirdropError):
    """Unclaimed tokens cannot be swept before the claim period ends."""
