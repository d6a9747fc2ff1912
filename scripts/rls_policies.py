from __future__ import annotations

import argparse
import sys

from fieldops.core.config import get_settings
from fieldops.core.errors import ConfigurationError
from fieldops.domain.resources import build_default_catalog
from fieldops.services.rls.registry import PolicyRegistry, build_registry
from fieldops.services.rls.table import load_policy_table


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate or describe the RLS policy table")
    parser.add_argument(
        "--file",
        help="Policy table JSON to validate; defaults to RLS_POLICY_PATH or the built-in table",
    )
    parser.add_argument("--role", help="Only show rows for this role")
    parser.add_argument("--resource", help="Only show rows for this resource")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate only; print nothing on success",
    )
    return parser


def _load(args: argparse.Namespace) -> PolicyRegistry:
    # Validate against the live resource catalog so owner fields are checked too.
    if args.file:
        return PolicyRegistry.from_table(load_policy_table(args.file), build_default_catalog())
    return build_registry(get_settings())


def main() -> int:
    args = _build_parser().parse_args()
    try:
        registry = _load(args)
    except ConfigurationError as exc:
        print(f"Invalid policy table: {exc}", file=sys.stderr)
        return 1
    if args.check:
        return 0

    rows = [
        row
        for row in registry.describe()
        if (not args.role or row["role"] == args.role) and (not args.resource or row["resource"] == args.resource)
    ]
    print(f"{'ROLE':<12} {'RESOURCE':<13} {'OP':<6} {'POLICY':<28} FILTER")
    for row in rows:
        policy = f"{row['policy']}{' (default)' if row['default'] else ''}"
        print(f"{row['role']:<12} {row['resource']:<13} {row['operation_class']:<6} {policy:<28} {row['filter']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
