#!/usr/bin/env python3
"""Print a weekly package as JSON for a seeded random profile.

Handy for eyeballing generated data or diffing two versions of the
generators against each other.

Usage:
    python scripts/export_week.py --seed 42 --week 2024-03-04 > week.json
"""

import argparse
import json
import sys
from datetime import date, datetime, time

from sleepsteps.generators.prng import SeededRandom
from sleepsteps.models.profile import generate_profile
from sleepsteps.services.planner import WeeklyPlanner


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--seed", type=int, default=1, help="Profile seed")
    parser.add_argument(
        "--week",
        type=date.fromisoformat,
        default=date.today(),
        help="Any date in the week to plan (YYYY-MM-DD)",
    )
    parser.add_argument("--mode", choices=["plain", "detailed"], default="detailed")
    args = parser.parse_args()

    profile = generate_profile(SeededRandom(args.seed))
    package = WeeklyPlanner().plan_week(
        profile,
        args.week,
        generated_at=datetime.combine(args.week, time.min),
        mode=args.mode,
    )

    print(f"Profile: {profile.get_summary()}", file=sys.stderr)
    print(package.get_summary(), file=sys.stderr)
    json.dump({"profile": profile.to_dict(), "package": package.to_dict()}, sys.stdout, indent=2)
    print()


if __name__ == "__main__":
    main()
