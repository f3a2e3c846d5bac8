import json
import os
import random

import pytest
from eth_utils import decode_hex, encode_hex

import airdrop_config
from airdrop_config import DuplicatePolicy, suggest_shard_nybbles
from airdrop_errors import MalformedInput
from basic_data_structure import Manifest
from conftest import ADDR_A1, ADDR_A2, ADDR_B3
from sharded_tree_builder import ShardedTreeBuilder, build_airdrop, shard_key_for
from sorted_pair_merkle import ZERO_HASH, combine_and_hash, hash_leaf


def read_dir(directory):
    contents = {}
    for name in sorted(os.listdir(directory)):
        with open(os.path.join(directory, name), 'rb') as f:
            contents[name] = f.read()
    return contents


def test_scenario_shards_and_roots(scenario_entries):
    builder = ShardedTreeBuilder(scenario_entries, 1)
    manifest = builder.build()

    assert sorted(builder.shards) == ['a', 'b']
    shard_root_a = combine_and_hash(hash_leaf(ADDR_A1, 100), hash_leaf(ADDR_A2, 200))
    shard_root_b = hash_leaf(ADDR_B3, 300)
    assert builder.shard_trees['a'].root == shard_root_a
    assert builder.shard_trees['b'].root == shard_root_b
    assert manifest.root == encode_hex(combine_and_hash(shard_root_a, shard_root_b))
    assert manifest.total == 600
    assert manifest.shard_nybbles == 1
    assert builder.shards['a'].proof == [encode_hex(shard_root_b)]
    assert builder.shards['b'].proof == [encode_hex(shard_root_a)]


def test_shard_key_uses_lowercase_prefix():
    assert shard_key_for(ADDR_A1, 1) == 'a'
    assert shard_key_for(ADDR_A1, 2) == 'aa'


def test_written_files(tmp_path, scenario_entries):
    build_airdrop(scenario_entries, 1, str(tmp_path))
    assert sorted(os.listdir(tmp_path)) == ['a.json', 'b.json', 'root.json']

    with open(tmp_path / 'root.json') as f:
        root = json.load(f)
    assert set(root) == {'root', 'shardNybbles', 'total'}
    assert root['total'] == '600'
    assert len(decode_hex(root['root'])) == 32

    with open(tmp_path / 'a.json') as f:
        shard = json.load(f)
    assert shard['entries'] == {ADDR_A1: {'balance': '100'}, ADDR_A2: {'balance': '200'}}
    assert len(shard['proof']) == 1


def test_rebuild_removes_stale_shard_files(tmp_path, scenario_entries):
    (tmp_path / 'claims-notes.json').write_text('{}')
    build_airdrop(scenario_entries + [('0x' + 'c' * 39 + '4', 50)], 1, str(tmp_path))
    assert 'c.json' in os.listdir(tmp_path)

    manifest = build_airdrop(scenario_entries, 1, str(tmp_path))
    assert sorted(os.listdir(tmp_path)) == ['a.json', 'b.json', 'claims-notes.json', 'root.json']
    assert manifest.total == 600


def test_build_is_deterministic_for_any_ordering(tmp_path, many_entries):
    shuffled = list(many_entries)
    random.Random(7).shuffle(shuffled)

    build_airdrop(many_entries, 1, str(tmp_path / 'first'))
    build_airdrop(shuffled, 1, str(tmp_path / 'second'))
    assert read_dir(tmp_path / 'first') == read_dir(tmp_path / 'second')


def test_extra_fields_are_kept_but_not_hashed(many_entries):
    plain = [(address, {'balance': value['balance']}) for address, value in many_entries]
    with_extra = ShardedTreeBuilder(many_entries, 1).build()
    without_extra = ShardedTreeBuilder(plain, 1).build()
    assert with_extra.root == without_extra.root


def test_entries_accept_bare_balances():
    manifest = ShardedTreeBuilder([(ADDR_A1, 100), (ADDR_A2, '200')], 1).build()
    assert manifest.total == 300


def test_empty_build_has_zero_root(tmp_path):
    manifest = build_airdrop([], 2, str(tmp_path))
    assert manifest.root == encode_hex(ZERO_HASH)
    assert manifest.total == 0
    assert os.listdir(tmp_path) == ['root.json']


def test_single_entry_root_is_its_leaf():
    manifest = ShardedTreeBuilder([(ADDR_B3, 300)], 2).build()
    assert manifest.root == encode_hex(hash_leaf(ADDR_B3, 300))


def test_duplicates_rejected_by_default():
    with pytest.raises(MalformedInput):
        ShardedTreeBuilder([(ADDR_A1, 1), (ADDR_A1.lower(), 2)], 1)


def test_duplicate_policy_sum():
    builder = ShardedTreeBuilder([(ADDR_A1, {'balance': 1, 'tag': 'first'}), (ADDR_A1, {'balance': 2, 'tag': 'second'})],
                                 1, duplicate_policy=DuplicatePolicy.SUM)
    entry = builder.entries[ADDR_A1]
    assert entry.balance == 3
    assert entry.extra == {'tag': 'first'}


def test_duplicate_policy_overwrite_from_config():
    airdrop_config.set_duplicate_policy('overwrite')
    builder = ShardedTreeBuilder([(ADDR_A1, 1), (ADDR_A1, 2)], 1)
    assert builder.entries[ADDR_A1].balance == 2
    assert builder.build().total == 2


@pytest.mark.parametrize('address', ['0x1234', 'aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1', 12, '0x' + 'g' * 40])
def test_invalid_addresses_rejected(address):
    with pytest.raises(MalformedInput):
        ShardedTreeBuilder([(address, 1)], 1)


@pytest.mark.parametrize('balance', [-1, '1.5', 'abc', '\u00b2', '\u0663', 2 ** 256, True, None])
def test_invalid_balances_rejected(balance):
    with pytest.raises(MalformedInput):
        ShardedTreeBuilder([(ADDR_A1, {'balance': balance})], 1)


@pytest.mark.parametrize('nybbles', [0, 41, '2'])
def test_invalid_shard_nybbles_rejected(nybbles):
    with pytest.raises(MalformedInput):
        ShardedTreeBuilder([], nybbles)


def test_manifest_round_trip(tmp_path):
    manifest = Manifest('0x' + 'ab' * 32, 2, 12345)
    path = str(tmp_path / 'root.json')
    manifest.save(path)
    assert Manifest.load(path) == manifest


def test_suggest_shard_nybbles():
    assert suggest_shard_nybbles(100) == 1
    assert suggest_shard_nybbles(80_000, 5000) == 1
    assert suggest_shard_nybbles(80_001, 5000) == 2
    assert suggest_shard_nybbles(1_280_000, 5000) == 2
    assert suggest_shard_nybbles(1_280_001, 5000) == 3
