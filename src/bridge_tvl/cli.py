from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

import httpx

from .blocks import BlockLocator
from .config import SECONDS_PER_DAY, Settings, default_interval, load_settings
from .errors import TvlError
from .events import AdaptiveRangeFetcher
from .pipeline import TvlPipeline, TvlReport
from .prices import CoinGeckoClient
from .rpc import ChainClient, RpcError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bridge-tvl",
        description=(
            "Reconstruct the TVL of the L1 standard bridge from deposit and withdrawal "
            "events, price it with CoinGecko and report time-weighted averages."
        ),
    )
    parser.add_argument("--ccy", default="usd", help="Currency to value TVL in (default: usd).")
    parser.add_argument(
        "--from",
        dest="from_ts",
        type=int,
        help="Unix timestamp of the range start (default: 24 hours before --to).",
    )
    parser.add_argument(
        "--to",
        dest="to_ts",
        type=int,
        help="Unix timestamp of the range end (default: now).",
    )
    parser.add_argument(
        "--interval",
        type=int,
        help="Sub-interval length in seconds (default: 1h for ranges up to 1 day, else 1d).",
    )
    parser.add_argument("--rpc-url", help="Chain node URL (default: NODE_URL_CHAIN_1 from the environment).")
    parser.add_argument(
        "--artifacts",
        type=Path,
        help="Optional directory where result.json diagnostics will be written.",
    )
    parser.add_argument(
        "--stdout-json",
        action="store_true",
        help="When set, emit the diagnostics JSON to stdout instead of the text report.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging to stderr.")
    return parser


def resolve_range(args: argparse.Namespace, now: int | None = None) -> tuple[int, int, int]:
    end = args.to_ts if args.to_ts is not None else (now if now is not None else round(time.time()))
    start = args.from_ts if args.from_ts is not None else end - SECONDS_PER_DAY
    if start > end:
        raise TvlError("--from timestamp cannot be higher than --to timestamp")
    interval = args.interval if args.interval is not None else default_interval(start, end)
    if interval <= 0:
        raise TvlError("--interval must be a positive number of seconds")
    return start, end, interval


def format_timestamp(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%d-%m-%Y %H:%M:%S")


def render_report(report: TvlReport) -> List[str]:
    column = f"TVL_{report.currency}"
    lines = [f"Timestamp, {column}"]
    lines.extend(f"{point.timestamp}, {point.value}" for point in report.total)
    lines.append("")
    lines.append(f"intervalStart, {column}")
    lines.extend(f"{start}, {value}" for start, value in report.interval_twaps.items())
    lines.append("")
    lines.append(
        f"TWAP for period from {format_timestamp(report.start)} to {format_timestamp(report.end)} "
        f"UTC: {report.twap} {report.currency}"
    )
    return lines


def build_diagnostics(report: TvlReport) -> Dict[str, Any]:
    return {
        "currency": report.currency,
        "start_epoch": report.start,
        "end_epoch": report.end,
        "interval_seconds": report.interval,
        "from_block": report.from_block,
        "to_block": report.to_block,
        "event_count": report.event_count,
        "twap": str(report.twap),
        "interval_twaps": {str(start): str(value) for start, value in report.interval_twaps.items()},
        "asset_twaps": {asset: str(result.full) for asset, result in report.asset_twaps.items()},
        "series": [[point.timestamp, str(point.value)] for point in report.total],
    }


def write_artifacts(artifacts_dir: Path | None, diagnostics: Dict[str, Any]) -> None:
    if artifacts_dir is None:
        return
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    result_path = artifacts_dir / "result.json"
    result_path.write_text(json.dumps(diagnostics, indent=2), encoding="utf-8")


def run_report(args: argparse.Namespace, settings: Settings, client: httpx.Client) -> TvlReport:
    start, end, interval = resolve_range(args)
    chain = ChainClient(settings.chain, client)
    locator = BlockLocator(chain.get_block, chain_id=settings.chain.chain_id)
    fetcher = AdaptiveRangeFetcher(chain.get_logs, settings.bridge, settings.fetch)
    oracle = CoinGeckoClient(settings.oracle, settings.bridge, client)
    pipeline = TvlPipeline(settings, locator, fetcher, chain, oracle)
    return pipeline.run(start, end, interval, currency=args.ccy)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        settings = load_settings(args.rpc_url)
        with httpx.Client() as client:
            report = run_report(args, settings, client)
    except (TvlError, RpcError, httpx.HTTPError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    diagnostics = build_diagnostics(report)
    write_artifacts(args.artifacts, diagnostics)
    if args.stdout_json:
        print(json.dumps(diagnostics, indent=2))
    else:
        print("\n".join(render_report(report)))
    return 0


def main_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
