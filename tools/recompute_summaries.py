"""
Rebuild cached result summaries from raw marks.

Usage:
  python tools/recompute_summaries.py
  python tools/recompute_summaries.py --class-id 3
  python tools/recompute_summaries.py --dry-run
"""

import argparse
import sys

from result_portal.config import PortalConfig, configure_logging
from result_portal.db import Database, StoreError, verify_schema_version
from result_portal.store import ResultStore


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute result summaries from marks.")
    parser.add_argument("--class-id", type=int, default=None, help="Only this class (default: every class)")
    parser.add_argument("--dry-run", action="store_true", help="List the classes that would be recomputed")
    return parser.parse_args(argv)


def recompute(store: ResultStore, class_id=None, dry_run=False) -> int:
    """Recompute one class or all classes. Returns the number of students touched."""
    if class_id is not None:
        school_class = store.get_class(class_id)
        if not school_class:
            raise SystemExit(f"Class {class_id} not found.")
        classes = [school_class]
    else:
        classes = store.list_classes()

    total = 0
    for school_class in classes:
        if dry_run:
            print(f"[dry-run] {school_class['name']} (id={school_class['id']})")
            continue
        count = store.recompute_class_summaries(school_class['id'])
        print(f"{school_class['name']}: {count} summaries recomputed")
        total += count
    return total


def main(argv=None) -> None:
    args = parse_args(argv)
    config = PortalConfig.from_env()
    configure_logging(config)
    database = Database.from_config(config)
    store = ResultStore(database, grade_config=config.grade_config, max_classes=config.max_classes)
    try:
        verify_schema_version(database, strict=True)
        total = recompute(store, class_id=args.class_id, dry_run=args.dry_run)
    except (StoreError, RuntimeError) as exc:
        print(f"Recompute failed: {exc}", file=sys.stderr)
        sys.exit(1)
    if not args.dry_run:
        print(f"Done. {total} summaries recomputed.")


if __name__ == "__main__":
    main()
