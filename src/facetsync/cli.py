# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""facetsync CLI: list site profiles, read or apply facets on a live page.

Usage:
    facetsync sites
    facetsync extract URL
    facetsync apply URL --filters FILE [--reset]

Global options: --profiles FILE, --json-logs, --log-level LEVEL, --headed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from . import GROUP_ORDER
from .config import EngineConfig
from .errors import FacetSyncError, GatewayTimeout
from .logging_config import configure
from .profiles import SiteRegistry


def _require_cli_deps() -> None:
    try:
        from tabulate import tabulate  # noqa: F401
    except ImportError as e:
        print(f"Missing CLI dependency: {e.name}\nInstall with: pip install facetsync[cli]", file=sys.stderr)
        sys.exit(1)


def _config(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig.from_env(profiles_path=args.profiles)


def _load_filters(path: str) -> dict:
    """Read a FacetSet JSON file. A saved set ({name, url, filters}) is unwrapped."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: cannot read filters from {path}: {e}", file=sys.stderr)
        sys.exit(1)
    if isinstance(data, dict) and isinstance(data.get("filters"), dict):
        data = data["filters"]
    if not isinstance(data, dict):
        print(f"Error: {path} must contain a JSON object", file=sys.stderr)
        sys.exit(1)
    return data


def cmd_sites(args: argparse.Namespace) -> None:
    """List configured storefront profiles."""
    from tabulate import tabulate

    registry = SiteRegistry.from_path(args.profiles)
    rows = [
        [
            p.site_id,
            ", ".join(p.hosts),
            ", ".join(k.value for k in GROUP_ORDER if p.group(k) is not None),
            "summary" if p.summary else "sections",
            "clear-all" if p.clear_all else "uncheck",
            "yes" if p.readiness.assume_ready else "no",
        ]
        for p in registry
    ]
    headers = ["Site", "Hosts", "Groups", "Extract", "Reset", "Assume ready"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))


async def _run_on_page(args: argparse.Namespace, message: dict) -> dict:
    from .browser_session import BrowserConfig, create_session
    from .gateway import FacetGateway
    from .service import FacetSyncService

    config = _config(args)
    service = FacetSyncService(config)
    profile = service.registry.resolve(args.url)  # fail before launching a browser

    async with create_session(BrowserConfig(headless=not args.headed)) as session:
        await session.navigate(args.url, profile.readiness.anchors)
        gateway = FacetGateway(session.page, service)
        try:
            return await gateway.call(message)
        except GatewayTimeout:
            # Let the abandoned work finish before the browser goes away.
            await gateway.drain()
            raise


def cmd_extract(args: argparse.Namespace) -> None:
    """Print the facets currently applied on URL."""
    try:
        response = asyncio.run(_run_on_page(args, {"action": "getCurrentFilters"}))
    except FacetSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(response, ensure_ascii=False, indent=2))
    if response.get("filters") is None:
        sys.exit(1)


def cmd_apply(args: argparse.Namespace) -> None:
    """Apply a FacetSet JSON file to URL and report what took effect."""
    from tabulate import tabulate

    payload = _load_filters(args.filters)
    message = {"action": "applyFilters", "filters": payload, "reset": args.reset}
    try:
        response = asyncio.run(_run_on_page(args, message))
    except FacetSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    result = response.get("result")
    if result:
        applied = result.get("appliedFilters", {})
        unapplied = result.get("unapplied", {})
        rows = [
            [k.plural, ", ".join(applied.get(k.plural, [])) or "-", ", ".join(unapplied.get(k.plural, [])) or "-"]
            for k in GROUP_ORDER
        ]
        print(tabulate(rows, headers=["Group", "Applied", "Not applied"], tablefmt="simple"), file=sys.stderr)
    print(json.dumps(response, ensure_ascii=False, indent=2))
    if not (result and result.get("success")):
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Carry facet selections between storefronts", prog="facetsync")
    parser.add_argument("--profiles", type=str, metavar="FILE", help="Site profile YAML (default: bundled)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sites", help="List configured storefront profiles")

    p_extract = subparsers.add_parser("extract", help="Print the facets applied on a listing page")
    p_extract.add_argument("url", metavar="URL")

    p_apply = subparsers.add_parser("apply", help="Apply a saved facet set to a listing page")
    p_apply.add_argument("url", metavar="URL")
    p_apply.add_argument("--filters", type=str, required=True, metavar="FILE", help="FacetSet JSON file")
    p_apply.add_argument("--reset", action="store_true", help="Clear active facets first")

    commands = {
        "sites": cmd_sites,
        "extract": cmd_extract,
        "apply": cmd_apply,
    }

    args = parser.parse_args(argv)
    configure(json_output=args.json_logs, level=args.log_level)
    _require_cli_deps()

    try:
        commands[args.command](args)
    except FacetSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
