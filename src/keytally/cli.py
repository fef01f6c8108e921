import argparse

from keytally.config import Config


def _positive_int(value: "str") -> "int":
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _positive_float(value: "str") -> "float":
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="keytally",
        description="Usage and balance dashboard for upstream API keys",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":8000",
        help="Address to listen on when serving (default: :8000)",
    )
    parser.add_argument(
        "--store.path",
        dest="store_path",
        default=None,
        help="JSON file holding the stored keys (env: KEYTALLY_STORE_PATH)",
    )
    parser.add_argument(
        "--fetch.concurrency",
        dest="concurrency",
        type=_positive_int,
        default=8,
        help="Maximum concurrent upstream requests (default: 8)",
    )
    parser.add_argument(
        "--fetch.timeout",
        dest="fetch_timeout",
        type=_positive_float,
        default=10.0,
        help="Upstream request timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the HTTP API (default)")
    commands.add_parser("snapshot", help="Print one usage snapshot as JSON")
    import_cmd = commands.add_parser("import", help="Import keys, one per line")
    import_cmd.add_argument("import_file", metavar="FILE")

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.command = args.command or "serve"
    config.concurrency = args.concurrency
    config.fetch_timeout = args.fetch_timeout
    config.log_level = args.log_level
    config.log_format = args.log_format
    if args.store_path:
        config.store_path = args.store_path
    config.listen_address = args.listen_address
    if config.command == "import":
        config.import_file = args.import_file
    return config
