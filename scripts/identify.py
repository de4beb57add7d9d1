#!/usr/bin/env python3
"""
Send contact fragments to a running identity service.

Each fragment is posted to ``/identify`` and the consolidated identity is
printed. Fragments are processed in the order given, which makes the
script handy for replaying merge scenarios by hand.

Usage:
    python scripts/identify.py --email lorraine@hillvalley.edu
    python scripts/identify.py --email mcfly@hillvalley.edu --phone 123456
    python scripts/identify.py --file fragments.csv --url http://localhost:3000

The CSV file has an ``email,phone`` header; either column may be empty.
"""

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import Any

import httpx


def read_fragments(path: Path) -> list[dict[str, Any]]:
    """Read email/phone fragments from a CSV file."""
    fragments = []
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            fragment: dict[str, Any] = {}
            if row.get("email"):
                fragment["email"] = row["email"].strip()
            if row.get("phone"):
                fragment["phoneNumber"] = row["phone"].strip()
            fragments.append(fragment)
    return fragments


def identify(client: httpx.Client, fragment: dict[str, Any]) -> dict[str, Any]:
    response = client.post("/identify", json=fragment)
    if response.status_code == 400:
        raise ValueError(response.json().get("error", "Invalid fragment"))
    response.raise_for_status()
    result: dict[str, Any] = response.json()
    return result


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Resolve contact fragments against the identity service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--email", help="Email address of the fragment")
    parser.add_argument("--phone", help="Phone number of the fragment")
    parser.add_argument(
        "--file",
        type=Path,
        help="CSV file of fragments (email,phone header)",
    )
    parser.add_argument(
        "--url",
        default="http://localhost:3000",
        help="Base URL of the identity service",
    )
    args = parser.parse_args()

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}", file=sys.stderr)
            sys.exit(1)
        fragments = read_fragments(args.file)
    else:
        fragment: dict[str, Any] = {}
        if args.email:
            fragment["email"] = args.email
        if args.phone:
            fragment["phoneNumber"] = args.phone
        fragments = [fragment]

    with httpx.Client(base_url=args.url, timeout=30.0) as client:
        for fragment in fragments:
            print(f"> {json.dumps(fragment)}")
            try:
                result = identify(client, fragment)
            except ValueError as e:
                print(f"  Rejected: {e}", file=sys.stderr)
                continue
            except httpx.HTTPError as e:
                print(f"Error calling identity service: {e}", file=sys.stderr)
                sys.exit(1)
            print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
