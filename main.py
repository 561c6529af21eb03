"""Entry point for running the speedtest collector."""

from __future__ import annotations

import argparse
import json

from netgauge import bootstrap


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Host telemetry speedtest collector")
    parser.add_argument("--config", help="Path to config.yaml", default=None)
    parser.add_argument("--host", default=None, help="Override web server host")
    parser.add_argument("--port", type=int, default=None, help="Override web server port")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and Flask debug mode")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single speedtest, print the snapshot as JSON and exit",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    context = bootstrap(args.config, log_level="DEBUG" if args.debug else None)

    if args.once:
        try:
            print(json.dumps(context.controller.run_blocking(), indent=2))
        finally:
            context.shutdown()
        return

    context.start()
    host = args.host or context.config.web.host
    port = args.port or context.config.web.port
    try:
        # The reloader would start a second scheduler and controller
        context.web_app.run(host=host, port=port, debug=args.debug, use_reloader=False)
    finally:
        context.shutdown()


if __name__ == "__main__":
    main()
