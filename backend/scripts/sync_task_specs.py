"""Regenerate practice task specs from lexemes and inflections.

By default only lexemes touched since the stored checkpoint are read. With
--full every supported lexeme is read and task specs for vanished lexemes are
deleted. --dry-run prints the plan without writing anything.

Usage:
    python scripts/sync_task_specs.py
    python scripts/sync_task_specs.py --full
    python scripts/sync_task_specs.py --full --dry-run
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from konjugo.database import SessionLocal
from konjugo.services.task_sync_state import load_checkpoint
from konjugo.services.task_synchronizer import build_sync_plan, ensure_task_specs_synced


def main():
    parser = argparse.ArgumentParser(description="Sync practice task specs")
    parser.add_argument("--full", action="store_true", help="Read all lexemes instead of changes since the checkpoint")
    parser.add_argument("--dry-run", action="store_true", help="Show the plan without writing")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        checkpoint = None if args.full else load_checkpoint(db)
        since = checkpoint.last_synced_at if checkpoint else None
        mode = f"delta since {since.isoformat()}" if since else "full"

        if args.dry_run:
            plan = build_sync_plan(db, since=since)
            if plan is None:
                print(f"=== TASK SYNC ({mode}, dry run): nothing to do ===")
                return
            stats = plan.stats
            print(f"=== TASK SYNC ({mode}, dry run) ===\n")
            print(f"  Lexemes considered:  {stats.lexemes_considered}")
            print(f"  Lexemes processed:   {stats.lexemes_processed}")
            print(f"  Lexemes skipped:     {stats.lexemes_skipped}")
            print(f"  Task specs inserted: {stats.task_specs_inserted}")
            print(f"  Task specs updated:  {stats.task_specs_updated}")
            print(f"  Task specs deleted:  {stats.task_specs_deleted}")
            if plan.stale_task_ids:
                print("\n  Would delete:")
                for task_id in plan.stale_task_ids[:50]:
                    print(f"    {task_id}")
                if len(plan.stale_task_ids) > 50:
                    print(f"    ... and {len(plan.stale_task_ids) - 50} more")
            if plan.checkpoint:
                changed = "changed" if plan.checkpoint_changed else "unchanged"
                print(f"\n  Checkpoint ({changed}): {plan.checkpoint.last_synced_at.isoformat()} {plan.checkpoint.version_hash}")
            return

        result = ensure_task_specs_synced(db, since=since)
        stats = result.stats
        print(
            f"Task sync ({mode}): {stats.lexemes_processed} lexemes processed, "
            f"{stats.task_specs_inserted} inserted, {stats.task_specs_updated} updated, "
            f"{stats.task_specs_deleted} deleted"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
