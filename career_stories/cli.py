#!/usr/bin/env python
"""
Career Stories CLI - cluster activities, generate stories, derive content.

Usage:
    career-stories cluster -u USER              # Cluster unclustered activities
    career-stories clusters -u USER             # List clusters
    career-stories generate CLUSTER_ID -u USER  # Generate a story for a cluster
    career-stories regenerate STORY_ID -u USER  # Regenerate an existing story
    career-stories derive STORY_ID interview -u USER
    career-stories packet S1 S2 S3 -u USER -t promotion
    career-stories init-db                      # Create tables
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime

from pydantic import ValidationError

from career_stories.db import get_connection, init_db
from career_stories.errors import CareerStoriesError, InvalidInputError
from career_stories.logging_utils import configure_safe_logging
from career_stories.models import DateRange, GenerationOptions
from career_stories.models.derivation import DERIVATION_TYPES, PACKET_TYPES
from career_stories.services.cluster_service import ClusterService
from career_stories.services.derivation_service import DerivationService
from career_stories.services.story_service import CareerStoryService, GenerationOutcome

logger = logging.getLogger(__name__)


def _build_options(args) -> GenerationOptions:
    try:
        return GenerationOptions(
            framework=args.framework,
            style=args.style,
            archetype=args.archetype,
            user_prompt=args.prompt,
            use_llm=not args.no_llm,
            polish=args.polish,
            debug=args.debug,
        )
    except ValidationError as e:
        raise InvalidInputError("Invalid generation options", {"errors": e.errors()})


def _print_outcome(outcome: GenerationOutcome) -> None:
    result = outcome.result
    if not outcome.accepted:
        print(f"\nRejected ({result.tier} tier): {', '.join(result.failed_gates)}")
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return

    story = outcome.story
    print(f"\n# {story.title}")
    print(f"Story {story.id} | {story.framework} | {result.tier} tier | {result.processing_time_ms}ms\n")
    for key, section in story.sections.items():
        print(f"## {key.capitalize()}")
        print(section.summary)
        if section.evidence:
            print(f"  evidence: {', '.join(item.activity_id for item in section.evidence)}")
        print()
    if story.corroborating_refs:
        print("Corroborating refs: " + ", ".join(ref.ref for ref in story.corroborating_refs))
    for edit in result.suggested_edits:
        print(f"  - {edit}")
    polish = result.quality.get("polish")
    if polish and polish["status"] != "not_requested":
        print(f"Polish: {polish['status']}")
    for warning in result.warnings:
        print(f"Warning {warning.code}: {warning.message}")
    if result.draft.diagnostics:
        print(json.dumps(result.draft.diagnostics, indent=2))


def cmd_cluster(args):
    """Cluster the user's unclustered activities."""
    date_range = None
    if args.start or args.end:
        if not (args.start and args.end):
            raise InvalidInputError("--start and --end must be given together")
        try:
            date_range = DateRange(
                start=datetime.fromisoformat(args.start),
                end=datetime.fromisoformat(args.end),
            )
        except (ValueError, ValidationError) as e:
            raise InvalidInputError(f"Invalid date range: {e}")

    with get_connection() as conn:
        clusters = ClusterService(conn).cluster_activities(
            args.user, date_range=date_range, min_cluster_size=args.min_size
        )

    if not clusters:
        print("No new clusters.")
        return

    print(f"\nCreated {len(clusters)} clusters:\n")
    for cluster in clusters:
        refs = ", ".join(cluster.shared_refs[:5])
        print(f"  {cluster.id}  {cluster.metrics.activity_count} activities  [{refs}]")
    print()


def cmd_clusters(args):
    """List the user's clusters."""
    with get_connection() as conn:
        clusters = ClusterService(conn).list_clusters(args.user)

    if not clusters:
        print("No clusters found.")
        return

    print(f"\n{'Cluster':<38} {'Name':<30} {'Acts':<5} {'Tools':<25}")
    print("-" * 100)
    for cluster in clusters:
        name = (cluster.name or "-")[:29]
        tools = ", ".join(cluster.metrics.tool_types)[:24]
        print(f"{cluster.id:<38} {name:<30} {cluster.metrics.activity_count:<5} {tools:<25}")
    print()


def cmd_generate(args):
    """Generate a story for a cluster."""
    options = _build_options(args)
    with get_connection() as conn:
        outcome = CareerStoryService(conn).generate_for_cluster(args.user, args.cluster_id, options)
    _print_outcome(outcome)


def cmd_regenerate(args):
    """Regenerate an existing story."""
    options = _build_options(args) if args.framework else None
    with get_connection() as conn:
        outcome = CareerStoryService(conn).regenerate_narrative(args.user, args.story_id, options)
    _print_outcome(outcome)


def cmd_derive(args):
    """Derive audience-specific content from one story."""
    with get_connection() as conn:
        derivation = DerivationService(conn).derive_single(
            args.user, args.story_id, args.type, tone=args.tone, custom_prompt=args.prompt
        )
    print(f"\n# {derivation.type} ({derivation.word_count} words, ~{derivation.speaking_time_sec}s spoken)\n")
    print(derivation.text)
    print()


def cmd_packet(args):
    """Combine several stories into a packet."""
    date_range = None
    if args.start or args.end:
        if not (args.start and args.end):
            raise InvalidInputError("--start and --end must be given together")
        date_range = (args.start, args.end)

    with get_connection() as conn:
        derivation = DerivationService(conn).derive_packet(
            args.user,
            args.story_ids,
            packet_type=args.type,
            tone=args.tone,
            custom_prompt=args.prompt,
            date_range=date_range,
        )
    print(f"\n# {derivation.type} packet ({len(derivation.story_ids)} stories, {derivation.word_count} words)\n")
    print(derivation.text)
    print()


def cmd_init_db(args):
    """Create the career stories tables."""
    init_db()
    print("Schema applied.")


def _add_generation_args(parser, framework_default):
    parser.add_argument("-f", "--framework", default=framework_default, help="Narrative framework")
    parser.add_argument("-s", "--style", default="professional", help="Writing style")
    parser.add_argument("-a", "--archetype", help="Story archetype")
    parser.add_argument("-p", "--prompt", help="Extra instructions (max 500 chars)")
    parser.add_argument("--no-llm", action="store_true", help="Skip the language model tier")
    parser.add_argument("--polish", action="store_true", help="Polish pattern-tier sections with the language model")
    parser.add_argument("--debug", action="store_true", help="Show tier attempts")


def main():
    parser = argparse.ArgumentParser(
        description="Career Stories CLI - clusters, stories and derivations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  career-stories cluster -u alice --min-size 3
  career-stories generate 7f3c... -u alice -f STARL --no-llm
  career-stories derive 91ab... interview -u alice --tone casual
  career-stories packet 91ab... 22cd... -u alice -t annual-review --start 2025-01 --end 2025-12
        """
    )
    parser.add_argument(
        "-u", "--user",
        default=os.getenv("CAREER_STORIES_USER_ID"),
        help="User id (default: $CAREER_STORIES_USER_ID)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    # cluster
    p_cluster = subparsers.add_parser("cluster", help="Cluster unclustered activities")
    p_cluster.add_argument("-m", "--min-size", type=int, default=2, help="Minimum cluster size")
    p_cluster.add_argument("--start", help="Only activities on/after (ISO date)")
    p_cluster.add_argument("--end", help="Only activities on/before (ISO date)")
    p_cluster.set_defaults(func=cmd_cluster)

    # clusters
    p_clusters = subparsers.add_parser("clusters", help="List clusters")
    p_clusters.set_defaults(func=cmd_clusters)

    # generate
    p_generate = subparsers.add_parser("generate", help="Generate a story for a cluster")
    p_generate.add_argument("cluster_id", help="Cluster ID")
    _add_generation_args(p_generate, "STAR")
    p_generate.set_defaults(func=cmd_generate)

    # regenerate
    p_regenerate = subparsers.add_parser("regenerate", help="Regenerate a story")
    p_regenerate.add_argument("story_id", help="Story ID")
    _add_generation_args(p_regenerate, None)
    p_regenerate.set_defaults(func=cmd_regenerate)

    # derive
    p_derive = subparsers.add_parser("derive", help="Derive content from a story")
    p_derive.add_argument("story_id", help="Story ID")
    p_derive.add_argument("type", choices=DERIVATION_TYPES, help="Derivation type")
    p_derive.add_argument("--tone", help="Writing style for the output")
    p_derive.add_argument("-p", "--prompt", help="Extra instructions (max 500 chars)")
    p_derive.set_defaults(func=cmd_derive)

    # packet
    p_packet = subparsers.add_parser("packet", help="Combine 2-10 stories into a packet")
    p_packet.add_argument("story_ids", nargs="+", help="Story IDs")
    p_packet.add_argument("-t", "--type", choices=PACKET_TYPES, default="promotion", help="Packet type")
    p_packet.add_argument("--tone", help="Writing style for the output")
    p_packet.add_argument("-p", "--prompt", help="Extra instructions (max 500 chars)")
    p_packet.add_argument("--start", help="Annual review start (YYYY-MM or YYYY-MM-DD)")
    p_packet.add_argument("--end", help="Annual review end (YYYY-MM or YYYY-MM-DD)")
    p_packet.set_defaults(func=cmd_packet)

    # init-db
    p_init = subparsers.add_parser("init-db", help="Create tables and indexes")
    p_init.set_defaults(func=cmd_init_db, needs_user=False)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    configure_safe_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if getattr(args, "needs_user", True) and not args.user:
        parser.error("a user id is required (-u or $CAREER_STORIES_USER_ID)")

    try:
        args.func(args)
    except CareerStoriesError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
