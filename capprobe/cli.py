#!/usr/bin/env python3
"""Command line entrypoint for a capacity probing campaign."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .common.control_client import ControlClient, ControlPlaneError
from .common.host_telemetry import HostTelemetryUnavailable, build_host_telemetry
from .common.streams import load_stream_list
from .common.telemetry import TelemetrySubscriber
from .common.telemetry_adapter import output_pattern
from .core.config import CONFIG, ConfigError, load_config, load_connection_overrides, load_options
from .core.logging_utils import METRICS, configure_logging, get_logger
from .report import ReportWriter
from .runner import Campaign

logger = get_logger("cli")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find how many video-ingest units a media host sustains")
    parser.add_argument("--config", help="JSON file with 'probe' options and 'connection' overrides")
    parser.add_argument(
        "--streams",
        default=None,
        help=f"File with one stream URI per line (default: {CONFIG['STREAM_LIST']})",
    )
    parser.add_argument("--stream", default=None, help="Single stream URI used when no stream list is readable")
    parser.add_argument("--report-dir", default=None, help=f"Report directory (default: {CONFIG['REPORT_DIR']})")
    parser.add_argument(
        "--host-telemetry",
        choices=("local", "ssh"),
        default=None,
        help="Where host CPU and memory readings come from",
    )
    parser.add_argument("--cams", type=int, default=1, help="Unit count the first attempt starts from")
    parser.add_argument(
        "--confirm-driven",
        action="store_true",
        help="Wait for a confirmation after every add/remove step",
    )
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--plain-logs", action="store_true", help="Human readable logs instead of JSON lines")
    return parser.parse_args(argv)


def _connection_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = load_connection_overrides(args.config)
    if args.streams is not None:
        overrides["STREAM_LIST"] = args.streams
    if args.stream is not None:
        overrides["STREAM"] = args.stream
    if args.report_dir is not None:
        overrides["REPORT_DIR"] = args.report_dir
    if args.host_telemetry is not None:
        overrides["HOST_TELEMETRY"] = args.host_telemetry
    return overrides


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, json_output=not args.plain_logs)

    try:
        cfg = load_config(_connection_overrides(args))
        options = load_options(args.config, confirm_driven=True if args.confirm_driven else None)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    streams = load_stream_list(cfg["STREAM_LIST"], cfg["STREAM"])
    if not streams:
        logger.error("No stream to test: set --stream or provide a stream list")
        return 2

    control = ControlClient(
        host=cfg["CONTROL_HOST"],
        port=cfg["CONTROL_PORT"],
        timeout=cfg["CONTROL_TIMEOUT"],
        rec_path=cfg["REC_PATH"],
        monitor_id=None if cfg["HEADLESS"] else cfg["MONITOR_ID"],
    )
    host = build_host_telemetry(cfg)
    telemetry = TelemetrySubscriber(
        host=cfg["TELEMETRY_HOST"],
        port=cfg["TELEMETRY_PORT"],
        output_re=output_pattern(cfg["HEADLESS"]),
    )

    try:
        logger.info("Fetching platform description")
        info = host.fetch_host_info()
        logger.info("Host %s (%s, %s)", info.hostname, info.processor, info.os_name)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        report = ReportWriter(cfg["REPORT_DIR"], info, options, timestamp)

        campaign = Campaign(options, control, host, streams, report=report, start_count=args.cams)
        telemetry.register_callback(campaign.submit)
        telemetry.start()
        control.start_statistics(options.stat_interval_s)
        with report:
            campaign.run()
    except KeyboardInterrupt:
        logger.info("Campaign interrupted, shutting down")
    except (ControlPlaneError, HostTelemetryUnavailable) as exc:
        logger.error("Campaign aborted: %s", exc)
        return 1
    finally:
        telemetry.stop()
        if cfg["STOP_ON_EXIT"]:
            try:
                control.stop_pipeline()
            except ControlPlaneError as exc:
                logger.warning("Could not stop pipeline: %s", exc)
        host.close()
        logger.info("Metrics %s", METRICS.snapshot())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
