"""
=============================================================================
COMMAND LINE INTERFACE
=============================================================================

    python -m simplehttp [options]

Serves two demo routes:

    GET    /exatch/$name   → 200 {"datalist":[{"id":1,"task":"should go to shop"}]}
    DELETE /$id            → 200 {}

    $ curl http://127.0.0.1:4000/exatch/bob
    {"datalist":[{"id":1,"task":"should go to shop"}]}

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .http import send_response
from .server import SimpleHttpApi


def build_demo_api(config: ServerConfig, request_logging: bool = True) -> SimpleHttpApi:
    api = SimpleHttpApi(config)

    if request_logging:
        api.enable_request_logging()

    @api.get("/exatch/$name")
    def list_tasks(request, response):
        send_response(response, 200, {"datalist": [{"id": 1, "task": "should go to shop"}]})

    @api.delete("/$id")
    def delete_item(request, response):
        send_response(response, 200, {})

    return api


def main(argv=None):
    """Parse arguments and serve the demo routes until interrupted."""
    try:
        env = ServerConfig.from_env()
    except ValueError as e:
        print(f"Error: invalid environment: {e}", file=sys.stderr)
        sys.exit(1)

    parser = argparse.ArgumentParser(
        prog="python -m simplehttp",
        description="HTTP router with middleware chaining",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m simplehttp                        # Run with defaults (port 4000)
  python -m simplehttp --port 3000            # Custom port
  python -m simplehttp --host 0.0.0.0         # Listen on all interfaces
  python -m simplehttp --response-timeout 10  # 503 for requests stuck > 10s
        """,
    )

    parser.add_argument(
        "--host", "-H",
        default=env.host,
        help=f"Host to bind to (default: {env.host})",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=env.port,
        help=f"Port to listen on (default: {env.port})",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Minimum worker threads (max will be 2x this)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=env.log_level.upper(),
        help=f"Logging level (default: {env.log_level.upper()})",
    )
    parser.add_argument(
        "--no-request-logging",
        action="store_true",
        help="Do not log requests and responses",
    )
    parser.add_argument(
        "--response-timeout",
        type=float,
        default=env.response_timeout,
        help="Seconds a request may take before it is answered with 503",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"simplehttp {__version__}",
    )

    args = parser.parse_args(argv)

    config = env
    config.host = args.host
    config.port = args.port
    config.log_level = args.log_level
    config.response_timeout = args.response_timeout
    if args.workers is not None:
        config.min_workers = args.workers
        config.max_workers = args.workers * 2

    try:
        api = build_demo_api(config, request_logging=not args.no_request_logging)
        api.run()
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
