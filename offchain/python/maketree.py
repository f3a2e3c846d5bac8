#!/usr/bin/env python3
"""
maketree - build and inspect sharded merkle airdrops

Commands:
  build   read an NDJSON airdrop file and write airdrops/<name>/
  sample  write a small deterministic test airdrop (one nybble shards)
  proof   print the entry and proof for one address
  verify  fold the proof for one address locally against the manifest root
  check-root  compare a deployed contract's root with the manifest root
"""

import argparse
import json
import logging
import os
import sys
from eth_utils import keccak, to_checksum_address

from airdrop_config import DuplicatePolicy, get_airdrop_config
from airdrop_contract_client import HARDHAT_CHAIN_ID, HARDHAT_URL, AirdropContractClient, setup_web3_connection
from airdrop_errors import AirdropError, MalformedInput
from basic_data_structure import Manifest
from sharded_merkle_tree import ShardedMerkleTree
from sharded_tree_builder import ShardedTreeBuilder

SAMPLE_TOKENS = '625000000000000000000000'
SAMPLE_NAME_HASH = '0x' + keccak(text='test').hex()


def _whole_tokens(value):
    # Snapshot amounts may carry a fractional part; it is dropped
    return int(str(value).split('.')[0])


def load_airdrop_file(path):
    """Parse one JSON object per line into (owner, fields) pairs with a computed balance."""
    airdrops = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                owner = data.pop('owner')
                data['balance'] = str(
                    _whole_tokens(data.get('past_tokens', 0)) + _whole_tokens(data.get('future_tokens', 0))
                )
            except (ValueError, KeyError, AttributeError) as e:
                raise MalformedInput(f"{path}:{line_no}: {e}") from e
            airdrops.append((owner, data))
    return airdrops


def sample_airdrops(count=20):
    airdrops = []
    for index in range(count):
        address = to_checksum_address(keccak(text=f'airdrop-sample-{index}')[-20:])
        airdrops.append((address, {
            'past_tokens': SAMPLE_TOKENS,
            'future_tokens': SAMPLE_TOKENS,
            'longest_owned_name': SAMPLE_NAME_HASH,
            'last_expiring_name': SAMPLE_NAME_HASH,
            'balance': str(2 * int(SAMPLE_TOKENS)),
            'has_reverse_record': index % 2 == 0,
        }))
    return airdrops


def _build(airdrops, shard_nybbles, duplicates, directory):
    builder = ShardedTreeBuilder(airdrops, shard_nybbles, duplicate_policy=duplicates)
    manifest = builder.build()
    builder.write(directory)
    print(f"✅ Built {len(builder.entries)} entries into {len(builder.shards)} shards")
    print(f"  Root:  {manifest.root}")
    print(f"  Total: {manifest.total}")
    print(f"  Files: {directory}")
    return manifest


def cmd_build(args):
    airdrops = load_airdrop_file(args.file)
    print(f"Loaded {len(airdrops)} airdrop records from {args.file}")
    shard_nybbles = args.shard_nybbles
    if shard_nybbles is None:
        shard_nybbles = get_airdrop_config().shard_nybbles
    _build(airdrops, shard_nybbles, args.duplicates, os.path.join(args.out_dir, args.name))
    return 0


def cmd_sample(args):
    config = get_airdrop_config()
    _build(sample_airdrops(args.count), config.test_shard_nybbles, args.duplicates,
           os.path.join(args.out_dir, args.name))
    return 0


def cmd_proof(args):
    tree = ShardedMerkleTree.from_files(args.dir)
    entry, proof = tree.get_proof(args.address)
    _, index = tree.verify(entry.address, entry.balance, proof)
    print(json.dumps({'address': entry.address, 'entry': entry.to_json(), 'index': index, 'proof': proof}, indent=4))
    return 0


def cmd_verify(args):
    tree = ShardedMerkleTree.from_files(args.dir)
    entry, proof = tree.get_proof(args.address)
    valid, index = tree.verify(entry.address, entry.balance, proof)
    if not valid:
        print(f"🔴 Proof for {entry.address} does not match root {tree.root}")
        return 1
    print(f"✅ Valid proof for {entry.address}: balance {entry.balance}, index {index}")
    return 0


def cmd_check_root(args):
    web3 = setup_web3_connection(args.rpc_url)
    if web3 is None:
        print(f"🔴 No node reachable at {args.rpc_url}")
        return 1
    manifest = Manifest.load(os.path.join(args.dir, get_airdrop_config().manifest_filename))
    client = AirdropContractClient.from_artifact(web3, args.artifact, chain_id=args.chain_id)
    if not client.check_root(manifest):
        print(f"🔴 Contract root {client.merkle_root()} does not match manifest root {manifest.root}")
        return 1
    print(f"✅ Contract holds root {manifest.root}")
    return 0


def build_parser():
    config = get_airdrop_config()
    parser = argparse.ArgumentParser(description='Generates and inspects sharded merkle airdrop trees')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose output')
    sub = parser.add_subparsers(dest='command', required=True)

    duplicates = dict(choices=[p.value for p in DuplicatePolicy], default=config.duplicate_policy.value,
                      help='What to do when an address appears more than once')

    p = sub.add_parser('build', help='Build an airdrop from an NDJSON file')
    p.add_argument('--file', required=True, help='File to read airdrop data from')
    p.add_argument('--name', required=True, help='Output name for the airdrop')
    p.add_argument('--shard-nybbles', type=int,
                   help=f'Number of nybbles to use for sharding (default {config.shard_nybbles})')
    p.add_argument('--duplicates', **duplicates)
    p.add_argument('--out-dir', default=config.output_dir)
    p.set_defaults(func=cmd_build)

    p = sub.add_parser('sample', help='Build a small test airdrop')
    p.add_argument('--name', default='test')
    p.add_argument('--count', type=int, default=20)
    p.add_argument('--duplicates', **duplicates)
    p.add_argument('--out-dir', default=config.output_dir)
    p.set_defaults(func=cmd_sample)

    for name, func, help_text in (('proof', cmd_proof, 'Print the proof for an address'),
                                  ('verify', cmd_verify, 'Verify the proof for an address locally')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('--dir', required=True, help='Airdrop build directory')
        p.add_argument('--address', required=True)
        p.set_defaults(func=func)

    p = sub.add_parser('check-root', help='Compare a deployed contract\'s root with the manifest')
    p.add_argument('--dir', required=True, help='Airdrop build directory')
    p.add_argument('--artifact', required=True, help='Hardhat artifact of the deployed MerkleAirdrop')
    p.add_argument('--rpc-url', default=HARDHAT_URL)
    p.add_argument('--chain-id', default=HARDHAT_CHAIN_ID)
    p.set_defaults(func=cmd_check_root)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose or get_airdrop_config().verbose_logging:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')
    try:
        return args.func(args)
    except (AirdropError, OSError) as e:
        print(f"⚠️  {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
