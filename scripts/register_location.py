#!/usr/bin/env python3
"""
Register a single place from the command line.
Encodes the description and stores it through the indexing pipeline.
"""

import argparse
import sys
from pathlib import Path

# Add the project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from placefinder.core.config import get_record_store, get_encoder_load_timeout
from placefinder.core.errors import PlaceFinderError
from placefinder.core.indexing import IndexingPipeline
from placefinder.core.schema import LocationPayload
from placefinder.vector.encoder_cache import get_encoder_cache


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Register a place with a semantic description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s "Fushimi Inari Taisha" "Kyoto shrine famous for its thousand red torii gates" \\
      --category shrine --lat 34.9671 --lon 135.7727 --visit-date 2025-04-01

Environment variables:
- DB_PATH=./data/places.db
- EMBED_PROVIDER=sentence_transformers|hash
        """
    )
    parser.add_argument("title", help="Place title")
    parser.add_argument("text", help="Free-text description used for semantic search")
    parser.add_argument("--category", default="", help="Place category")
    parser.add_argument("--lat", type=float, help="Latitude")
    parser.add_argument("--lon", type=float, help="Longitude")
    parser.add_argument("--image-url", action="append", default=[], help="Image URL (repeatable)")
    parser.add_argument("--visit-date", action="append", default=[], help="Visit date YYYY-MM-DD (repeatable)")
    args = parser.parse_args(argv)

    payload = LocationPayload(
        title=args.title,
        category=args.category,
        latitude=args.lat,
        longitude=args.lon,
        image_urls=args.image_url,
        visit_dates=args.visit_date,
    )

    try:
        pipeline = IndexingPipeline(get_record_store(), get_encoder_cache(),
                                    acquire_timeout=get_encoder_load_timeout())
        entity = pipeline.index_for_create(args.text, payload)
    except PlaceFinderError as e:
        print(f"ERROR: Registration failed: {e}")
        sys.exit(1)

    print(f"✓ Registered place {entity.id}: {entity.payload.title} ({len(entity.vector)}-dim vector)")
    return entity


if __name__ == "__main__":
    main()
