"""Command line interface for the segment matching engine.

Usage examples:

    # Create the schema
    python -m segment_match init-db

    # Activities passing through segment 7, tightest fit first
    python -m segment_match matches 7 --athlete 42 --tolerance 15

    # Metrics of activity 1001 over segment 7
    python -m segment_match metrics 7 1001 --athlete 42

    # Cut a segment from samples [120, 480) of activity 1001
    python -m segment_match create-segment --athlete 42 --name "Hill" \
        --activity 1001 --start 120 --end 480
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Optional, Sequence

from polyline import decode as polyline_decode

from .config import DATABASE_URL, DEFAULT_SORT_KEY, DEFAULT_TOLERANCE_M
from .errors import NotFoundError, OwnershipError, SegmentMatchError
from .matching import SORT_KEYS
from .models import Segment
from .services import SegmentActivityService
from .store import MatchCache, SqlRouteStore, build_engine, build_session_factory, init_db
from .utils import json_dumps_sorted

LOGGER = logging.getLogger("segment_match.cli")


def _segment_payload(segment: Segment) -> dict[str, Any]:
    return {
        "segment_id": segment.segment_id,
        "athlete_id": segment.athlete_id,
        "name": segment.name,
        "description": segment.description,
        "length_m": segment.length_m,
        "elevation_gain_m": segment.elevation_gain_m,
        "points": [list(pt) for pt in segment.points],
    }


def _add_tolerance(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--tolerance",
        type=float,
        default=DEFAULT_TOLERANCE_M,
        help=f"Match tolerance in metres (default: {DEFAULT_TOLERANCE_M:g})",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="segment_match",
        description="Match recorded routes against favourite segments",
    )
    parser.add_argument(
        "--database-url",
        default=DATABASE_URL,
        help="SQLAlchemy database URL (default from SEGMENT_MATCH_DATABASE_URL)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    segments = commands.add_parser("segments", help="List an athlete's segments")
    segments.add_argument("--athlete", type=int, required=True)

    matches = commands.add_parser("matches", help="List activities matching a segment")
    matches.add_argument("segment_id", type=int)
    matches.add_argument("--athlete", type=int, required=True)
    _add_tolerance(matches)
    matches.add_argument(
        "--sort",
        default=DEFAULT_SORT_KEY,
        help=f"Sort key: {', '.join(SORT_KEYS)} (default: {DEFAULT_SORT_KEY})",
    )
    matches.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore the cached list and recompute",
    )

    indices = commands.add_parser("indices", help="Resolve the on-segment index range")
    indices.add_argument("segment_id", type=int)
    indices.add_argument("activity_id", type=int)
    indices.add_argument("--athlete", type=int, required=True)
    _add_tolerance(indices)

    metrics = commands.add_parser("metrics", help="Segment-scoped activity metrics")
    metrics.add_argument("segment_id", type=int)
    metrics.add_argument("activity_id", type=int)
    metrics.add_argument("--athlete", type=int, required=True)
    _add_tolerance(metrics)

    create = commands.add_parser("create-segment", help="Create a favourite segment")
    create.add_argument("--athlete", type=int, required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--description")
    source = create.add_mutually_exclusive_group(required=True)
    source.add_argument("--polyline", help="Encoded polyline of the segment")
    source.add_argument("--activity", type=int, help="Activity to cut the segment from")
    create.add_argument("--start", type=int, help="First sample index (with --activity)")
    create.add_argument("--end", type=int, help="Exclusive end sample index (with --activity)")

    inv_segment = commands.add_parser(
        "invalidate-segment", help="Drop cached entries of a segment"
    )
    inv_segment.add_argument("segment_id", type=int)

    inv_activity = commands.add_parser(
        "invalidate-activity", help="Drop cached entries of an activity"
    )
    inv_activity.add_argument("activity_id", type=int)
    return parser


def _run(args: argparse.Namespace, service: SegmentActivityService) -> Any:
    if args.command == "segments":
        return [_segment_payload(seg) for seg in service.list_segments(args.athlete)]
    if args.command == "matches":
        listings = service.list_matches(
            args.athlete,
            args.segment_id,
            tolerance_m=args.tolerance,
            sort_key=args.sort,
            force_refresh=args.refresh,
        )
        return [listing.as_dict() for listing in listings]
    if args.command == "indices":
        resolved = service.resolve_indices(
            args.athlete, args.segment_id, args.activity_id, args.tolerance
        )
        return {"start_index": resolved.start_index, "end_index": resolved.end_index}
    if args.command == "metrics":
        return service.get_segment_activity_metrics(
            args.athlete, args.segment_id, args.activity_id, args.tolerance
        ).as_dict()
    if args.command == "create-segment":
        if args.polyline:
            points = polyline_decode(args.polyline)
            segment = service.create_segment(
                args.athlete, args.name, points, description=args.description
            )
        else:
            if args.start is None or args.end is None:
                raise ValueError("--start and --end are required with --activity")
            segment = service.create_segment_from_activity(
                args.athlete,
                args.activity,
                args.name,
                args.start,
                args.end,
                description=args.description,
            )
        return _segment_payload(segment)
    if args.command == "invalidate-segment":
        return {"removed": service.invalidate_segment(args.segment_id)}
    if args.command == "invalidate-activity":
        return {"removed": service.invalidate_activity(args.activity_id)}
    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for ``python -m segment_match``; returns the exit code."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, args.log_level),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )

    engine = build_engine(args.database_url)
    try:
        init_db(engine)
        if args.command == "init-db":
            print(json_dumps_sorted({"initialised": True}))
            return 0
        session_factory = build_session_factory(engine)
        store = SqlRouteStore(session_factory)
        service = SegmentActivityService(store, MatchCache(session_factory))
        try:
            result = _run(args, service)
        except (NotFoundError, OwnershipError) as exc:
            LOGGER.error("%s", exc)
            return 1
        except (SegmentMatchError, ValueError) as exc:
            LOGGER.error("%s", exc)
            return 2
        print(json_dumps_sorted(result))
        return 0
    finally:
        engine.dispose()


__all__ = ["main"]
