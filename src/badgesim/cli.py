"""
Command line entry points.

Usage:
    badgesim --user-count 1000 --days 5 --seed 42 --output events.jsonl \\
        --user-profiles-output answer_key.jsonl --facility-output facility.json
    badgesim --streaming --time-acceleration-factor 3600
    badgesim-analyze events.jsonl --facility facility.json --answer-key answer_key.jsonl
"""

from __future__ import annotations

from contextlib import nullcontext
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
import argparse
import json
import logging
import sys

from badgesim import __version__
from badgesim.config import ConfigError, ConfigValidationError, SimulationConfig, load_config
from badgesim.facility.travel import TravelScope, TravelTimeTable
from badgesim.output.sinks import create_sink
from badgesim.output.writers import write_answer_key, write_facility
from badgesim.simulation.engine import GenerationError, SimulationEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(verbose: bool = False, debug: bool = False) -> None:
    """Log to stderr so that stdout can carry the event stream."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="badgesim",
        description="Badge access simulator - synthetic badge events with injected anomalies",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--days", type=int, help="Number of simulated days")
    parser.add_argument("--user-count", type=int, help="Number of users")
    parser.add_argument("--location-count", type=int, help="Number of locations")
    parser.add_argument(
        "--curious-percentage",
        type=float,
        help="Fraction of users probing unauthorized rooms (0-1)",
    )
    parser.add_argument(
        "--cloned-badge-percentage",
        type=float,
        help="Fraction of users with a cloned badge (0-1)",
    )
    parser.add_argument(
        "--night-shift-percentage",
        type=float,
        help="Fraction of users working the night shift (0-1)",
    )
    parser.add_argument("--seed", type=int, help="Run seed (random when omitted)")
    parser.add_argument(
        "--workers",
        type=int,
        help="Worker processes for event generation",
    )

    # Output
    parser.add_argument("--output", help="Event output file (default: stdout)")
    parser.add_argument("--output-format", choices=["json", "csv"], help="Event record format")
    parser.add_argument(
        "--streaming",
        action="store_true",
        default=None,
        help="Pace output by simulated time instead of writing as fast as possible",
    )
    parser.add_argument(
        "--time-acceleration-factor",
        type=float,
        help="Simulated seconds per wall-clock second in streaming mode",
    )
    parser.add_argument("--user-profiles-output", help="Write the answer key (JSON Lines) here")
    parser.add_argument("--facility-output", help="Write the facility layout (JSON) here")
    parser.add_argument("--include-event-type", action="store_true", help="Add event_type to records")
    parser.add_argument("--include-failure-reason", action="store_true", help="Add failure_reason to records")

    # Modes
    parser.add_argument("--dry-run", action="store_true", help="Validate and summarize, write nothing")
    parser.add_argument("--print-config", action="store_true", help="Print the effective configuration and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Informational logging")
    parser.add_argument("--debug", action="store_true", help="Debug logging")

    return parser.parse_args(argv)


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map CLI arguments onto SimulationConfig fields (None means not given)."""
    return {
        "days": args.days,
        "user_count": args.user_count,
        "location_count": args.location_count,
        "curious_user_percentage": args.curious_percentage,
        "cloned_badge_percentage": args.cloned_badge_percentage,
        "night_shift_percentage": args.night_shift_percentage,
        "seed": args.seed,
        "workers": args.workers,
        "output_format": args.output_format,
        "streaming": args.streaming,
        "time_acceleration_factor": args.time_acceleration_factor,
        "user_profiles_output": args.user_profiles_output,
    }


def build_config(args: argparse.Namespace) -> SimulationConfig:
    """
    Raises:
        ConfigError: If the configuration file cannot be loaded
        ConfigValidationError: If the merged values are invalid
    """
    config = load_config(args.config, config_overrides(args))
    field_changes = {}
    if args.include_event_type:
        field_changes["include_event_type"] = True
    if args.include_failure_reason:
        field_changes["include_failure_reason"] = True
    if field_changes:
        config = config.replace(output_fields=config.output_fields.model_copy(update=field_changes))
    return config


def _dry_run(engine: SimulationEngine) -> int:
    engine.setup()
    summary = {
        "seed": engine.seed,
        "days": engine.config.days,
        "facility": engine.facility.summary(),
        "users": len(engine.population),
        "variants": engine.population.variant_counts(),
        "night_shift": engine.population.night_shift_count(),
    }
    print(json.dumps(summary, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Run the simulator."""
    args = parse_args(argv)
    configure_logging(args.verbose, args.debug)

    try:
        config = build_config(args)
    except (ConfigError, ConfigValidationError) as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.print_config:
        print(config.to_json())
        return EXIT_OK

    engine = SimulationEngine(config)
    if config.seed is None:
        # Always report a randomly chosen seed
        print(f"Random seed: {engine.seed}", file=sys.stderr)
    logger.info(f"Using seed {engine.seed}")

    try:
        if args.dry_run:
            return _dry_run(engine)
        engine.setup()
    except GenerationError as e:
        logger.error(str(e))
        return EXIT_ERROR

    try:
        target = open(args.output, "w", encoding="utf-8", newline="") if args.output else nullcontext(sys.stdout)
    except OSError as e:
        logger.error(f"Cannot open output: {e}")
        return EXIT_ERROR

    try:
        with target as stream:
            sink = create_sink(config, stream)
            try:
                engine.run(sink)
            except KeyboardInterrupt:
                logger.warning("Interrupted, flushing buffered output")
                sink.close()
                return EXIT_INTERRUPTED
            sink.close()

        if config.user_profiles_output:
            write_answer_key(config.user_profiles_output, engine.population.answer_key.entries())
        if args.facility_output:
            write_facility(args.facility_output, engine.facility, engine.travel)
    except OSError as e:
        logger.error(f"Output failed: {e}")
        return EXIT_ERROR

    return EXIT_OK


def parse_analyze_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="badgesim-analyze",
        description="Detect impossible travelers and curious users and classify rooms",
    )
    parser.add_argument("events", help="Event file (JSON Lines or CSV)")
    parser.add_argument("--facility", help="Facility JSON; unknown references are skipped")
    parser.add_argument("--answer-key", help="Answer key JSON Lines for precision/recall")
    parser.add_argument("--curious-threshold", type=int, default=3, help="Distinct denied rooms to flag a user")
    parser.add_argument(
        "--inter-building-minutes",
        type=float,
        help="Minimum travel between buildings of one location (default: from --facility, else 30)",
    )
    parser.add_argument(
        "--inter-location-hours",
        type=float,
        help="Minimum travel between locations (default: from --facility, else 4)",
    )
    parser.add_argument(
        "--failure-rate-percentile",
        type=float,
        help="Also flag users above this failure-rate percentile",
    )
    parser.add_argument("--output", help="Report file (default: stdout)")
    parser.add_argument("--sequential", action="store_true", help="Run detectors one after another")
    parser.add_argument("--verbose", "-v", action="store_true", help="Informational logging")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def analysis_travel(
    args: argparse.Namespace,
    stored: Optional[TravelTimeTable],
) -> Optional[TravelTimeTable]:
    """
    Travel table for the impossible-traveler detector.

    Command line minimums override the table stored with the facility.

    Raises:
        ValueError: If the resulting minimums are inconsistent
    """
    if args.inter_building_minutes is None and args.inter_location_hours is None:
        return stored
    base = stored or TravelTimeTable.default()
    inter_building = base.minimums[TravelScope.SAME_LOCATION]
    inter_location = base.minimums[TravelScope.CROSS_LOCATION]
    if args.inter_building_minutes is not None:
        inter_building = timedelta(minutes=args.inter_building_minutes)
    if args.inter_location_hours is not None:
        inter_location = timedelta(hours=args.inter_location_hours)
    return TravelTimeTable.from_constants(inter_building, inter_location)


def analyze_main(argv: Optional[List[str]] = None) -> int:
    """Run the detectors over an event file."""
    from badgesim.analysis.loader import read_answer_key, read_events, read_facility, read_travel
    from badgesim.analysis.report import analyze, evaluate

    args = parse_analyze_args(argv)
    configure_logging(args.verbose, args.debug)

    try:
        loaded = read_events(args.events)
        facility = read_facility(args.facility) if args.facility else None
        stored = read_travel(args.facility) if args.facility else None
        answer_key = read_answer_key(args.answer_key) if args.answer_key else None
        travel = analysis_travel(args, stored)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Cannot load input: {e}")
        return EXIT_ERROR

    try:
        report = analyze(
            loaded.events,
            facility=facility,
            travel=travel,
            curious_threshold=args.curious_threshold,
            failure_rate_percentile=args.failure_rate_percentile,
            parallel=not args.sequential,
            skipped_malformed=loaded.skipped,
        )
    except ValueError as e:
        logger.error(f"Analysis failed: {e}")
        return EXIT_ERROR

    result = report.to_dict()
    if answer_key is not None:
        result["evaluation"] = evaluate(report, answer_key, facility)

    text = json.dumps(result, indent=2)
    try:
        if args.output:
            Path(args.output).write_text(text + "\n", encoding="utf-8")
        else:
            print(text)
    except OSError as e:
        logger.error(f"Cannot write report: {e}")
        return EXIT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
