"""Ask the running API process to re-queue lost or stale assessments.

The assessment queue lives in memory, so reconciliation runs inside the API
process: SUBMITTED trade-ins missing from the queue are enqueued and stale
AI_PROCESSING rows are reset.
"""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for assessment reconciliation."""

    parser = argparse.ArgumentParser(description="Re-queue stuck trade-in assessments.")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    args = parser.parse_args()

    resp = httpx.post(
        f"{args.api_url}/internal/assessments/requeue", headers={"x-api-key": args.api_key}, timeout=30.0
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
