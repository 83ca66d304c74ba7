#!/usr/bin/env python3
"""
Index Rebuild Utility
Re-encodes stored places whose vector no longer matches their description or
the configured encoder (after a model change or an out-of-band text edit).
"""

import argparse
import sys
from pathlib import Path

# Add the project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from placefinder.core.config import get_record_store, get_encoder_load_timeout
from placefinder.core.errors import PlaceFinderError
from placefinder.core.indexing import IndexingPipeline
from placefinder.core.search_service import SimilaritySearchEngine
from placefinder.vector.encoder_cache import get_encoder_cache


def main(argv=None):
    """Re-encode stale places in the configured record store."""
    parser = argparse.ArgumentParser(description="Re-encode stale place vectors")
    parser.add_argument("--force", action="store_true", help="Re-encode every place, stale or not")
    parser.add_argument("--verify-query", default="shrine", help="Query used for the verification search")
    args = parser.parse_args(argv)

    print("Starting vector index rebuild...")

    try:
        store = get_record_store()
        encoder_cache = get_encoder_cache()
        encoder = encoder_cache.acquire(timeout=get_encoder_load_timeout())
    except PlaceFinderError as e:
        print(f"ERROR: Record store or encoder not available: {e}")
        sys.exit(1)

    print(f"✓ Encoder ready ({encoder.model_version})")

    try:
        print(f"Found {store.count()} places in record store")
        pipeline = IndexingPipeline(store, encoder_cache)
        report = pipeline.reindex_stale(force=args.force)
    except PlaceFinderError as e:
        print(f"ERROR: Record store not readable: {e}")
        sys.exit(1)

    print(f"✓ Re-encoded {len(report.reindexed)} of {report.scanned} places")
    if report.failed:
        print(f"WARNING: Failed to re-encode {len(report.failed)} places: {report.failed}")

    # Verify index
    try:
        engine = SimilaritySearchEngine(store, encoder_cache)
        results = engine.search(args.verify_query, threshold=-1.0, limit=3)
        print(f"✓ Verification search returned {len(results)} results")
    except PlaceFinderError as e:
        print(f"WARNING: Verification search failed: {e}")

    print("Index rebuild complete!")
    if report.failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
