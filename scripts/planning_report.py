"""Print the current and next week of the planning, with RCP attendance.

Connects to Supabase, resolves the template and RCP definitions over the
notification window, applies exceptions, and prints a table (or JSON).

Run with: python scripts/planning_report.py
Date:     python scripts/planning_report.py --today 2025-06-04
Doctor:   python scripts/planning_report.py --doctor d2
JSON:     python scripts/planning_report.py --json

Exit codes:
  0 = success
  1 = error (message on stderr)
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import date

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.planning.config import get_config  # noqa: E402
from src.planning.directory import DoctorDirectory  # noqa: E402
from src.planning.logging import setup_logging  # noqa: E402
from src.planning.models import Occurrence  # noqa: E402
from src.planning.service import PlanningService  # noqa: E402
from src.planning.store.supabase import SupabaseStore  # noqa: E402
from src.planning.weeks import notification_window  # noqa: E402


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Print the two-week planning window with RCP attendance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=date.today(),
        help="Reference date (YYYY-MM-DD), default today",
    )
    parser.add_argument(
        "--doctor",
        default=None,
        help="Doctor id: only show occurrences involving this doctor, with pending count",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output JSON instead of a table",
    )
    return parser.parse_args()


def _format_row(occurrence: Occurrence, service: PlanningService, directory: DoctorDirectory) -> str:
    doctors = ", ".join(directory.name(d) for d in occurrence.primary_doctor_ids) or "-"
    flags = []
    if occurrence.is_rescheduled:
        flags.append(f"moved from {occurrence.original_date.isoformat()}")
    if occurrence.has_custom_doctors:
        flags.append("substitution")
    line = (
        f"{occurrence.date.isoformat()}  {occurrence.period.value:<9}  "
        f"{occurrence.location:<22}  {occurrence.type.value:<12}  {doctors}"
    )
    if occurrence.type.value == "RCP":
        decisions = service.attendance.attendees(occurrence)
        answered = sum(1 for status in decisions.values() if status is not None)
        line += f"  [{answered}/{len(decisions)} answered]"
    if flags:
        line += f"  ({'; '.join(flags)})"
    return line


async def main(args: argparse.Namespace) -> None:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    async with await SupabaseStore.connect(config) as store:
        service = PlanningService(store, config=config)
        await service.refresh()
        directory = await DoctorDirectory.load(store)

        occurrences = service.week(args.today)
        if args.doctor:
            occurrences = [o for o in occurrences if args.doctor in o.involved_doctor_ids]
        start, end = notification_window(args.today, config.notification_weeks)

        if args.json:
            payload = {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "occurrences": [o.model_dump(mode="json") for o in occurrences],
            }
            if args.doctor:
                payload["pending_rcp_count"] = service.notification_count(args.doctor, args.today)
            print(json.dumps(payload, indent=2, ensure_ascii=False))
            return

        print(f"Planning {start.isoformat()} -> {end.isoformat()}  ({len(occurrences)} occurrences)")
        for occurrence in occurrences:
            print(_format_row(occurrence, service, directory))
        if args.doctor:
            pending = service.pending_rcps(args.doctor, args.today)
            print(f"\n{directory.name(args.doctor)}: {len(pending)} RCP decision(s) pending")
            for occurrence in pending:
                print(f"  - {occurrence.date.isoformat()} {occurrence.sub_type or occurrence.location}")


if __name__ == "__main__":
    args = _parse_args()
    try:
        asyncio.run(main(args))
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
