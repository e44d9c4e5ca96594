#!/usr/bin/env python3
"""
Temporary upload purge script.

Large PDFs are uploaded straight to storage under tmp/uploads/ and removed once
the background job has processed them. Jobs that never ran (client closed the tab
before the completion callback) leave objects behind; this removes the stale ones.

Safe to run repeatedly.

Usage:
    python3 scripts/purge_temp_uploads.py --dry-run
    python3 scripts/purge_temp_uploads.py --older-than-hours 12
"""
import argparse
import sys
from datetime import datetime, timedelta, timezone

from botocore.exceptions import BotoCoreError, ClientError

from dispatch_app.services.document_storage import delete_by_key, list_objects
from dispatch_app.services.storage_keys import temp_upload_prefix


def stale_objects(objects: list[dict], cutoff: datetime) -> list[dict]:
    stale = []
    for item in objects:
        modified = item.get("last_modified")
        if modified is None:
            continue
        if modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        if modified < cutoff:
            stale.append(item)
    return stale


def purge(older_than_hours: float, dry_run: bool) -> dict:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)
    stale = stale_objects(list_objects(temp_upload_prefix()), cutoff)

    deleted = 0
    failed = 0
    for item in stale:
        if dry_run:
            print(f"  [dry-run] would delete {item['key']!r} (modified {item['last_modified']:%Y-%m-%d %H:%M})")
            continue
        if delete_by_key(item["key"]):
            deleted += 1
        else:
            failed += 1
            print(f"  failed to delete {item['key']!r}", file=sys.stderr)

    return {"stale": len(stale), "deleted": deleted, "failed": failed}


def main():
    parser = argparse.ArgumentParser(description="Delete stale temporary PDF uploads")
    parser.add_argument("--dry-run", action="store_true", help="Print what would happen without deleting anything")
    parser.add_argument("--older-than-hours", type=float, default=24.0, help="Only delete objects older than this")
    args = parser.parse_args()

    try:
        result = purge(args.older_than_hours, args.dry_run)
    except (BotoCoreError, ClientError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    if not result["stale"]:
        print("No stale temporary uploads found.")
    elif args.dry_run:
        print(f"\n[dry-run] {result['stale']} object(s) would be deleted. No changes made.")
    else:
        print(f"\nDone. {result['deleted']} object(s) deleted, {result['failed']} failed.")


if __name__ == "__main__":
    main()
