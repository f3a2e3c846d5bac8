import pytest
from eth_utils import keccak, to_checksum_address

import airdrop_config

ADDR_A1 = to_checksum_address("0x" + "a" * 39 + "1")
ADDR_A2 = to_checksum_address("0x" + "a" * 39 + "2")
ADDR_B3 = to_checksum_address("0x" + "b" * 39 + "3")


def make_address(seed):
    return to_checksum_address(keccak(text=f"holder-{seed}")[-20:])


@pytest.fixture(autouse=True)
def default_config():
    airdrop_config.reset_to_default_config()
    yield
    airdrop_config.reset_to_default_config()


@pytest.fixture
def scenario_entries():
    return [(ADDR_A1, {"balance": "100"}), (ADDR_A2, {"balance": "200"}), (ADDR_B3, {"balance": "300"})]


@pytest.fixture
def many_entries():
    return [(make_address(i), {"balance": str(1000 + i), "rank": i}) for i in range(150)]
