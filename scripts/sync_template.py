"""Sync a weekly template exported as JSON into schedule_templates.

The file holds a list of schedule_templates rows. Rows whose id exists in
the store are updates; rows without an id, or with an id the store does not
know (a locally generated temporary id), are created. Persisted rows missing
from the file are deleted.

Dry run (default) prints the diff only:
    python scripts/sync_template.py template.json

Apply it:
    python scripts/sync_template.py template.json --execute

Exit codes:
  0 = success (or dry run)
  1 = error, or the create phase failed and nothing new was saved
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.planning.config import get_config  # noqa: E402
from src.planning.errors import InvalidTemplateError  # noqa: E402
from src.planning.logging import get_logger, setup_logging  # noqa: E402
from src.planning.mapping import Row, draft_template_from_row, template_from_row  # noqa: E402
from src.planning.models import TemplateSlot  # noqa: E402
from src.planning.store.supabase import SupabaseStore  # noqa: E402
from src.planning.sync import (  # noqa: E402
    SyncResult,
    TemplateSynchronizer,
    compute_template_diff,
    format_diff_summary,
)

log = get_logger(__name__)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Diff a JSON template against schedule_templates and optionally apply it.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "template",
        type=Path,
        help="JSON file containing a list of schedule_templates rows",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Apply the sync (default is dry run)",
    )
    return parser.parse_args()


def load_rows(path: Path) -> list[Row]:
    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise InvalidTemplateError(f"{path}: expected a JSON list of rows")
    return rows


def slots_from_rows(rows: list[Row], persisted_ids: set[str]) -> list[TemplateSlot]:
    """Build the local template; unknown ids are treated as drafts."""
    slots = []
    for row in rows:
        if row.get("id") is not None and str(row["id"]) in persisted_ids:
            slots.append(template_from_row(row))
        else:
            slots.append(draft_template_from_row(row))
    return slots


def print_result(result: SyncResult) -> None:
    status = "FAILED (local template kept)" if result.failed else "OK"
    print(f"\nSync {status}")
    print(f"  Deleted: {len(result.deleted_ids)}")
    print(f"  Updated: {len(result.updated_ids)}")
    print(f"  Created: {len(result.created)}")
    print(f"  Saved template: {len(result.saved_template)} slots")
    if result.warnings:
        print(f"\n{len(result.warnings)} warning(s):")
        for warning in result.warnings:
            ids = ", ".join(warning.slot_ids)
            print(f"  [{warning.phase}] {warning.error_type}: {warning.message} ({ids})")


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    rows = load_rows(args.template)
    async with await SupabaseStore.connect(config) as store:
        persisted_ids = await store.list_template_ids()
        local_template = slots_from_rows(rows, persisted_ids)

        diff = compute_template_diff(local_template, persisted_ids)
        print(f"Template diff for {args.template} ({len(local_template)} slots):")
        print(format_diff_summary(diff))

        if not args.execute:
            print("\nDry run: nothing written. Use --execute to apply.")
            return 0

        log.info("template_sync_requested", file=str(args.template), slots=len(local_template))
        result = await TemplateSynchronizer(store).sync(local_template, persisted_ids)
        print_result(result)
        return 1 if result.failed else 0


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(asyncio.run(main(args)))
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
