#!/usr/bin/env python3
"""
Request Report — show deferred requests grouped by type.

Reads the configured request store and prints counts per status plus each
entry's wait time, account and attempt count.

Usage:
    python scripts/request_report.py                 # Text report
    python scripts/request_report.py --json          # JSON output
    python scripts/request_report.py --config path/to/settings.yaml
"""
import argparse
import asyncio
import json
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run_report(config_path: str = None, as_json: bool = False) -> str:
    from config.settings import load_settings
    from core.report import build_report, format_report
    from database.store_factory import create_store

    settings = load_settings(config_path)
    store = create_store(settings.store.as_factory_config())
    try:
        report = await build_report(store, settings.verifier.namespace)
    finally:
        await store.close()

    if as_json:
        return json.dumps(report.model_dump(mode="json"), indent=2)
    return format_report(report)


def main():
    parser = argparse.ArgumentParser(description="Deferred request report")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    args = parser.parse_args()

    print(asyncio.run(run_report(args.config, as_json=args.json)))


if __name__ == "__main__":
    main()
