#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

import requests


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the fulfillment demo scenario against a running API")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--show-load", action="store_true", help="also print the reconciled loading sheet")
    args = parser.parse_args()

    resp = requests.post(f"{args.base_url}/demo/seed", timeout=60)
    resp.raise_for_status()
    data = resp.json()
    print(json.dumps(data, indent=2, ensure_ascii=False))

    sheet = data.get("loading_sheet")
    if args.show_load and sheet:
        detail = requests.get(f"{args.base_url}/loading-sheets/{sheet['id']}", timeout=30)
        detail.raise_for_status()
        print(json.dumps(detail.json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
