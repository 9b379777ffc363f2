#!/usr/bin/env python3
"""
Command line front end for the pattern scanner
Reads OHLC bars from CSV and prints the detection response as JSON
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import scan_settings
from .constants import DEFAULT_LIMIT, DEFAULT_TIMEFRAME, TIMEFRAME_SECONDS
from .patterns import patterns_detect
from ..patterns.common import ALL_TYPES, TYPE_ALIASES
from ..utils.utils import _coerce_scalar, parse_kv_or_json


# Simple debug logging controlled by env var PATTERNSCAN_CLI_DEBUG
def _debug_enabled() -> bool:
    try:
        v = os.environ.get("PATTERNSCAN_CLI_DEBUG", "").strip().lower()
        return v not in ("", "0", "false", "no")
    except Exception:
        return False


def _debug(msg: str) -> None:
    if _debug_enabled():
        try:
            print(f"[cli-debug] {msg}", file=sys.stderr)
        except Exception:
            pass


def _parse_set_overrides(items: Optional[List[str]]) -> Dict[str, Any]:
    """Parse repeated --set entries like 'wedge.min_slope=0.0001' into a flat override dict."""
    out: Dict[str, Any] = {}
    for item in items or []:
        if not isinstance(item, str) or not item.strip():
            continue
        if "=" not in item:
            raise ValueError(f"Invalid --set '{item}': expected key=value")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid --set '{item}': expected key=value")
        out[key] = _coerce_scalar(value.strip())
    return out


def _read_bars(path: str) -> pd.DataFrame:
    src = sys.stdin if path == "-" else path
    df = pd.read_csv(src)
    df.columns = [str(c).strip().lower() for c in df.columns]
    _debug(f"read {len(df)} rows with columns {list(df.columns)}")
    return df


def _split_patterns(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [s.strip() for s in str(value).split(",") if s.strip()]


def _cmd_detect(args) -> int:
    config = parse_kv_or_json(args.config) if args.config else {}
    config.update(_parse_set_overrides(args.set_overrides))
    _debug(f"config overrides: {config}")
    out = patterns_detect(
        _read_bars(args.csv),
        timeframe=args.timeframe,
        patterns=_split_patterns(args.patterns),
        limit=args.limit,
        config=config or None,
        include_forming=args.include_forming,
        include_completed=not args.no_completed,
        include_invalid=args.include_invalid,
        require_current_in_pattern=args.require_current,
        current_relevance_days=args.relevance_days,
        now=args.now,
        view=args.view,
    )
    print(json.dumps(out, indent=args.indent, default=str, ensure_ascii=False))
    return 1 if "error" in out else 0


def _cmd_types(args) -> int:
    print(json.dumps({"types": list(ALL_TYPES),
                      "aliases": {k: list(v) for k, v in TYPE_ALIASES.items()}}, indent=args.indent))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patternscan",
        description="Detect classic chart patterns in OHLC bars (JSON output)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase log verbosity")
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation (0 for compact)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    det = subparsers.add_parser("detect", help="Scan a CSV of bars for chart patterns",
                                formatter_class=argparse.RawDescriptionHelpFormatter)
    det.add_argument("csv", help="CSV file with open,high,low,close[,time] columns ('-' for stdin)")
    det.add_argument("--timeframe", default=DEFAULT_TIMEFRAME, choices=sorted(TIMEFRAME_SECONDS),
                     type=lambda s: str(s).upper(), help="Bar timeframe (default: %(default)s)")
    det.add_argument("--patterns", default=None,
                     help="Comma separated types or aliases (triangle, wedge, all)")
    det.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Most recent bars to analyse")
    det.add_argument("--config", default=None, help="Overrides as JSON or 'k=v,k2=v2'")
    det.add_argument("--set", dest="set_overrides", action="append", default=None,
                     help="Single override, repeatable: --set wedge.min_slope=0.0001")
    det.add_argument("--include-forming", action="store_true", help="Include forming / near_completion patterns")
    det.add_argument("--no-completed", action="store_true", help="Drop completed patterns")
    det.add_argument("--include-invalid", action="store_true", help="Include invalidated patterns")
    det.add_argument("--require-current", action="store_true",
                     help="Keep only patterns ending within --relevance-days of --now")
    det.add_argument("--relevance-days", type=float, default=None, help="Freshness window in days")
    det.add_argument("--now", default=None, help="Reference time for freshness ('2024-05-01', '2 days ago')")
    det.add_argument("--view", default="detailed", choices=["summary", "detailed", "debug"])
    det.set_defaults(func=_cmd_detect)

    types = subparsers.add_parser("types", help="List supported pattern types and aliases")
    types.set_defaults(func=_cmd_types)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    level = scan_settings.get_log_level()
    if args.verbose:
        level = logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    if args.indent is not None and args.indent <= 0:
        args.indent = None

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nAborted by user", file=sys.stderr)
        return 1
    except Exception as e:
        if _debug_enabled():
            import traceback
            traceback.print_exc()
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
