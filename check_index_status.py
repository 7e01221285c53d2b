#!/usr/bin/env python3
"""Check the status of published documentation indexes in Meilisearch."""
import sys

import click

from config import TEMP_SUFFIX, ConfigError, ScraperEnv, load_config
from meilisearch_index import EngineError, MeilisearchEngine


def index_status(engine: MeilisearchEngine, index_name: str) -> dict:
    """Collect live/shadow index status for one index name."""
    temp_name = f"{index_name}{TEMP_SUFFIX}"
    status = {
        "index": index_name,
        "live_exists": engine.index_exists(index_name),
        "documents": None,
        "stale_shadow": engine.index_exists(temp_name),
    }
    if status["live_exists"]:
        status["documents"] = engine.get_document_count(index_name)
    return status


def print_status(status: dict):
    print(f"Index: {status['index']}")
    if status["live_exists"]:
        print("✅ Live index: Published")
        print(f"   Documents: {status['documents']:,}")
    else:
        print("⏳ Live index: Not published yet")

    if status["stale_shadow"]:
        print(f"⚠️  Leftover shadow index {status['index']}{TEMP_SUFFIX} found")
        print("   A previous run did not finish; the next run will delete it first")


@click.command()
@click.argument("targets", nargs=-1, required=True)
def main(targets: tuple[str, ...]):
    """Show index status for TARGETS (config files or index names)."""
    try:
        env = ScraperEnv.load()
    except ConfigError as e:
        print(f"✗ ERROR: {e}")
        sys.exit(1)

    engine = MeilisearchEngine.from_env(env)
    failed = False

    print("=" * 60)
    print("Meilisearch Docs Index - Status")
    print("=" * 60)

    for target in targets:
        print()
        index_name = target
        if target.endswith(".json"):
            try:
                index_name = load_config(target).index_uid
            except ConfigError as e:
                print(f"❌ {target}: {e}")
                failed = True
                continue
        try:
            print_status(index_status(engine, index_name))
        except EngineError as e:
            print(f"❌ {index_name}: {e}")
            failed = True

    print()
    print("=" * 60)
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
