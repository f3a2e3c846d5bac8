"""
Airdrop Eligibility API

Small HTTP front for a built airdrop:
- GET /score?addresses=a,b   token allocation per address (in whole tokens)
- GET /proof/{address}       entry, proof and claim index for one address
- GET /root                  the manifest
Shards are loaded on demand through the prover, never the whole dataset.
"""

import argparse
import logging
from fastapi import FastAPI, HTTPException, Query

from airdrop_errors import EntryNotFound, MalformedInput, ShardNotFound
from sharded_merkle_tree import ShardedMerkleTree

logger = logging.getLogger(__name__)

TOKEN_DECIMALS = 18


def create_app(tree: ShardedMerkleTree) -> FastAPI:
    app = FastAPI(title="Airdrop Eligibility API")

    @app.get("/root")
    def get_root():
        return tree.manifest.to_json()

    @app.get("/score")
    def get_score(addresses: str = Query(...)):
        results = []
        for address in [a.strip() for a in addresses.split(',') if a.strip()]:
            try:
                value = tree.get_entry(address).balance / 10 ** TOKEN_DECIMALS
            except (EntryNotFound, MalformedInput):
                value = 0.0
            except ShardNotFound as e:
                logger.warning("Scoring %s without its shard: %s", address, e)
                value = 0.0
            results.append({"address": address, "value": value})
        return {"score": results}

    @app.get("/proof/{address}")
    def get_proof(address: str):
        try:
            entry, proof = tree.get_proof(address)
        except MalformedInput as e:
            raise HTTPException(status_code=400, detail=str(e))
        except EntryNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ShardNotFound as e:
            raise HTTPException(status_code=503, detail=str(e))
        _, index = tree.verify(entry.address, entry.balance, proof)
        return {"address": entry.address, "entry": entry.to_json(), "proof": proof, "index": index}

    return app


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description='Serve airdrop eligibility and proofs')
    parser.add_argument('--dir', required=True, help='Airdrop build directory')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=8000)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(ShardedMerkleTree.from_files(args.dir)), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
