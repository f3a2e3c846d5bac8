"""
Airdrop Contract Client

Thin web3 wrapper around a deployed MerkleAirdrop contract, loaded from its
Hardhat artifact. Lets a client check the on-chain root against a manifest,
read claim bits and submit claimTokens transactions.
"""

import json
import logging
from eth_utils import decode_hex, encode_hex
from web3 import Web3

from airdrop_errors import AirdropError, InvalidProof
from basic_data_structure import normalize_address, parse_balance, parse_bytes32

logger = logging.getLogger(__name__)

HARDHAT_URL = "http://127.0.0.1:8545"
HARDHAT_CHAIN_ID = "31337"


def setup_web3_connection(url=HARDHAT_URL):
    """Connect to a node, returning None when it is not reachable."""
    web3 = Web3(Web3.HTTPProvider(url))
    if not web3.is_connected():
        logger.warning("No node reachable at %s", url)
        return None
    if web3.eth.accounts:
        web3.eth.default_account = web3.eth.accounts[0]
    return web3


class AirdropContractClient:
    """Calls into an on-chain MerkleAirdrop verifier."""

    def __init__(self, web3, contract):
        self.web3 = web3
        self.contract = contract

    @classmethod
    def from_artifact(cls, web3, artifact_path, chain_id=HARDHAT_CHAIN_ID, address=None):
        with open(artifact_path, 'r') as f:
            artifact = json.load(f)
        if address is None:
            try:
                address = artifact['networks'][chain_id]['address']
            except KeyError as e:
                raise AirdropError(f"No deployment for chain {chain_id} in {artifact_path}") from e
        contract = web3.eth.contract(address=normalize_address(address), abi=artifact['abi'])
        return cls(web3, contract)

    def merkle_root(self):
        return encode_hex(self.contract.functions.merkleRoot().call())

    def check_root(self, manifest):
        """True when the contract holds the manifest's root."""
        on_chain = self.merkle_root().lower()
        if on_chain != manifest.root.lower():
            logger.warning("Root mismatch: manifest %s, contract %s", manifest.root, on_chain)
            return False
        return True

    def is_claimed(self, index):
        return self.contract.functions.isClaimed(index).call()

    def claim_tokens(self, recipient, amount, merkle_proof, sender=None):
        """Submit claimTokens and wait for the receipt. A reverted transaction raises InvalidProof."""
        proof = [parse_bytes32(sibling) for sibling in merkle_proof]
        tx_params = {'from': sender} if sender else {}
        tx_hash = self.contract.functions.claimTokens(
            normalize_address(recipient), parse_balance(amount), proof
        ).transact(tx_params)
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt['status'] != 1:
            raise InvalidProof(f"claimTokens reverted in tx {encode_hex(tx_hash)}")
        logger.info("Claimed %s tokens for %s in tx %s", amount, recipient, encode_hex(tx_hash))
        return receipt


def root_as_bytes32(manifest):
    """Manifest root in the form contract constructors and setters expect."""
    return decode_hex(manifest.root)
