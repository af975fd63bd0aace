"""Inspect a webhook event or trigger the failed-webhook retry sweep.

Replays go through the normal idempotent path, so events already PROCESSED
are never applied twice.
"""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for webhook inspection/replay."""

    parser = argparse.ArgumentParser(description="Show webhook status or retry due webhook events.")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--event-id", help="print the stored status of one event")
    args = parser.parse_args()

    headers = {"x-api-key": args.api_key}
    if args.event_id:
        resp = httpx.get(f"{args.api_url}/api/webhooks/tradein/status/{args.event_id}", headers=headers, timeout=10.0)
    else:
        resp = httpx.post(f"{args.api_url}/internal/webhooks/retry", headers=headers, timeout=60.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
