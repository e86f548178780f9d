#!/usr/bin/env python
"""
Command-line interface for GRD episode settlement.

Quick tool for settling episodes from a data directory and looking up
tariff and GRD reference data.
"""

import argparse
import logging
import sys

from grd_settlement import InMemoryEpisodeRepository, SettlementService
from grd_settlement.exceptions import EpisodeNotFoundError, SettlementError
from grd_settlement.reporting import settlements_frame, summarize_by_agreement
from grd_settlement.tariff import agreement_kind, resolve_base_price, tier_for_weight


logger = logging.getLogger(__name__)


def load_service(args):
    """Build a service over the JSON files in the data directory."""
    repository = InMemoryEpisodeRepository()
    repository.load_from_directory(args.data_dir)
    return SettlementService(repository)


def settle_episode(args):
    """Settle a single episode."""
    service = load_service(args)

    try:
        result = service.read_episode(args.episode_id)
    except EpisodeNotFoundError:
        print(f"\nERROR: Episode {args.episode_id} not found", file=sys.stderr)
        sys.exit(1)
    except SettlementError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        sys.exit(1)

    classification = result.classification.value if result.classification else "(not classified)"

    print("\n" + "=" * 60)
    print("GRD SETTLEMENT RESULT")
    print("=" * 60)
    print(f"Episode:         {result.episode_id}")
    print(f"Agreement:       {result.agreement_code or '(none)'}")
    print(f"GRD:             {result.grd_code or '(none)'}")
    print(f"Length of stay:  {result.length_of_stay} days")
    print(f"Classification:  {classification}")
    if result.tier:
        print(f"Tier:            {result.tier}")
    print()
    base_price = f"${result.base_price:,.2f}" if result.base_price is not None else "(not found)"
    print(f"Base price:        {base_price}")
    print(f"Group value:       ${result.group_value:,.2f}")
    print(f"Technology (AT):   ${result.technology_amount:,.2f}")
    print(f"Rescue delay:      ${result.delay_payment:,.2f}")
    print(f"Outlier superior:  ${result.outlier_payment:,.2f}")
    print()
    print(f"FINAL AMOUNT:      ${result.final_amount:,.2f}")
    print("=" * 60)

    if result.notes:
        print("\nNotes:")
        for note in result.notes:
            print(f"  - {note}")

    print()


def list_episodes(args):
    """Settle every episode and print one row each."""
    service = load_service(args)
    frame = settlements_frame(service.list_episodes())

    if frame.empty:
        print("\nNo episodes found")
        return

    print()
    print(frame.to_string(index=False))
    print()


def summarize(args):
    """Print totals per agreement."""
    service = load_service(args)
    summary = summarize_by_agreement(settlements_frame(service.list_episodes()))

    print("\n" + "=" * 60)
    print("SETTLEMENT SUMMARY BY AGREEMENT")
    print("=" * 60)
    print(summary.to_string(index=False))
    print()


def lookup_tier(args):
    """Show the tier and base price for an agreement and weight."""
    service = load_service(args)

    try:
        tier = tier_for_weight(args.weight)
    except SettlementError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        sys.exit(1)

    price = resolve_base_price(args.agreement, args.weight, service.repository.price_entries(args.agreement))

    print("\n" + "=" * 60)
    print("TARIFF LOOKUP")
    print("=" * 60)
    print(f"Agreement:     {args.agreement}")
    print(f"Kind:          {agreement_kind(args.agreement).value}")
    print(f"Weight:        {args.weight:.4f}")
    print(f"Weight tier:   {tier or '(none)'}")
    print(f"Base price:    {f'${price:,.2f}' if price is not None else '(not found)'}")
    print("=" * 60)
    print()


def lookup_grd(args):
    """Look up GRD information."""
    service = load_service(args)

    rule = service.repository.get_grd_rule(args.grd_code)
    if rule is None:
        print(f"\nERROR: GRD {args.grd_code} not found", file=sys.stderr)
        sys.exit(1)

    def show(value):
        return "(none)" if value is None else f"{value:g}"

    print("\n" + "=" * 60)
    print("GRD INFORMATION")
    print("=" * 60)
    print(f"Code:          {rule.code}")
    print(f"Description:   {rule.description}")
    print(f"Weight:        {show(rule.weight)}")
    print()
    print("Cutoff points:")
    print(f"  Lower: {show(rule.lower_cutoff)}")
    print(f"  Upper: {show(rule.upper_cutoff)}")
    print()
    print("Stay percentiles:")
    print(f"  P50:   {show(rule.percentile50)}")
    print(f"  P75:   {show(rule.percentile75)}")
    print("=" * 60)
    print()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="GRD Episode Settlement CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Settle one episode
  %(prog)s settle EP-1001

  # Settle every episode in another data directory
  %(prog)s --data-dir /srv/grd list

  # Totals per agreement
  %(prog)s summary

  # Base price for an agreement and weight
  %(prog)s tier FNS012 1.8

  # Look up GRD information
  %(prog)s lookup-grd 14101
        """
    )
    parser.add_argument('--data-dir', default='data', help='Directory with JSON data files (default: data)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    settle_parser = subparsers.add_parser('settle', help='Settle an episode')
    settle_parser.add_argument('episode_id', help='Episode identifier')
    settle_parser.set_defaults(func=settle_episode)

    list_parser = subparsers.add_parser('list', help='Settle and list all episodes')
    list_parser.set_defaults(func=list_episodes)

    summary_parser = subparsers.add_parser('summary', help='Totals per agreement')
    summary_parser.set_defaults(func=summarize)

    tier_parser = subparsers.add_parser('tier', help='Look up tier and base price')
    tier_parser.add_argument('agreement', help='Agreement code (e.g., FNS012)')
    tier_parser.add_argument('weight', type=float, help='GRD weight')
    tier_parser.set_defaults(func=lookup_tier)

    grd_parser = subparsers.add_parser('lookup-grd', help='Look up GRD information')
    grd_parser.add_argument('grd_code', help='GRD code')
    grd_parser.set_defaults(func=lookup_grd)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
