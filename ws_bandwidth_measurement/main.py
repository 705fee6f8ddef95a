import argparse
import asyncio
import logging

from . import config
from .config import Settings
from .payload import PayloadError, write_payload_file
from .server import run_servers

LOG_FORMAT = "%(asctime)s - %(message)s"


def build_settings(args: argparse.Namespace) -> Settings:
    return Settings(
        host=args.host,
        ws_port=args.ws_port,
        http_port=args.http_port,
        ws_path=args.ws_path,
        payload_file=args.payload_file,
        payload_size=args.payload_size,
        cache_payload=not args.no_cache,
        heartbeat_interval=args.heartbeat_interval,
        client_timeout=args.client_timeout,
    )


def cmd_serve(args: argparse.Namespace) -> int:
    settings = build_settings(args)
    try:
        asyncio.run(run_servers(settings))
    except KeyboardInterrupt:
        logging.info("Server is shutting down.")
    except PayloadError as e:
        logging.error(f"Could not load payload: {e}")
        return 1
    return 0


def cmd_generate_payload(args: argparse.Namespace) -> int:
    try:
        write_payload_file(args.path, args.size, seed=args.seed)
    except OSError as e:
        logging.error(f"Could not write payload file: {e}")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ws-speedtest",
        description="WebSocket download speed test server.",
    )
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="run the WebSocket endpoint and the landing page")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--ws-port", type=int, default=config.WS_PORT)
    serve.add_argument("--http-port", type=int, default=config.HTTP_PORT)
    serve.add_argument("--ws-path", default=config.WS_PATH)
    serve.add_argument("--payload-file", help="serve this file instead of a generated payload")
    serve.add_argument("--payload-size", type=int, default=config.PAYLOAD_SIZE)
    serve.add_argument(
        "--no-cache", action="store_true", help="re-read the payload file on every request"
    )
    serve.add_argument("--heartbeat-interval", type=float, default=config.HEARTBEAT_INTERVAL)
    serve.add_argument("--client-timeout", type=float, default=config.CLIENT_TIMEOUT)
    serve.set_defaults(func=cmd_serve)

    gen = sub.add_parser("generate-payload", help="write a payload file")
    gen.add_argument("path")
    gen.add_argument("--size", type=int, default=config.PAYLOAD_SIZE)
    gen.add_argument("--seed", type=int, default=config.PAYLOAD_SEED)
    gen.set_defaults(func=cmd_generate_payload)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if args.cmd == "serve":
        try:
            build_settings(args)
        except ValueError as e:
            parser.error(str(e))
    elif args.size <= 0:
        parser.error(f"--size must be positive, got {args.size}")

    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
