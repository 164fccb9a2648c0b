#!/usr/bin/env python3
"""
Example: shield tokens through a running prover service and wait for the proof.

Start the service first with ``shielded-actions serve``.
"""
import os
import sys
import time

import requests

SERVICE_URL = os.environ.get("PROVER_URL", "http://localhost:3002")


def main():
    sender = os.environ.get("SENDER", "0x1111111111111111111111111111111111111111")

    keypair = requests.post(f"{SERVICE_URL}/api/generate-keypair", timeout=10).json()
    print(f"Generated nullifier key commitment: {keypair['public_key']}")

    response = requests.post(
        f"{SERVICE_URL}/api/prove/shield",
        json={
            "token": "USDC",
            "amount": "1000000",
            "sender": sender,
            "nullifier_key": keypair["private_key"],
        },
        timeout=10,
    )
    if response.status_code != 200:
        print(f"Request rejected: {response.json()['error']}")
        return 1

    job_id = response.json()["job_id"]
    print(f"Submitted job {job_id}")

    while True:
        job = requests.get(f"{SERVICE_URL}/api/job/{job_id}", timeout=10).json()
        print(f"  status: {job['status']}")
        if job["status"] in ("completed", "failed"):
            break
        time.sleep(5)

    if job["status"] == "failed":
        print(f"Proof failed ({job.get('error_kind')}): {job.get('error')}")
        return 1

    if "calldata" in job:
        print(f"Send to the protocol adapter: {job['calldata'][:74]}...")
    else:
        print(f"Mock proof generated: {job['proof']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
