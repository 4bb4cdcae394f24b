"""CLI entrypoints for assetgen commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from .config import AssetGenConfig, ConfigError, load_config
from .engine import AssetEngine
from .errors import AssetGenError
from .logging import configure_logging
from .orchestrator import Orchestrator


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_project_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Project root containing .assetgen.yml (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetgen",
        description="Build or serve text web assets produced by Python modules.",
    )
    _add_verbose_option(parser)
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Render every entry module into the output directory.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_project_argument(build_parser)
    build_parser.add_argument("--source", type=Path, default=None, help="Override the source directory.")
    build_parser.add_argument("--out", type=Path, default=None, help="Override the output directory.")
    build_parser.add_argument(
        "--release",
        default=None,
        help="Release version used as the manifest path segment instead of fingerprints.",
    )
    build_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the build report as JSON.",
    )

    render_parser = subparsers.add_parser(
        "render",
        help="Render a single asset module to stdout.",
    )
    _add_verbose_option(render_parser, suppress_default=True)
    render_parser.add_argument("module", type=Path, help="Path to a <name>.<ext>.py module.")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve assets on demand over HTTP.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_project_argument(serve_parser)
    serve_parser.add_argument("--host", default=None, help="Bind address.")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for assetgen commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    if args.command == "render":
        _run_render(parser, args)
        return

    try:
        config = load_config(Path(args.path))
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")
    _configure_from(args, config)

    if args.command == "build":
        if args.source is not None:
            config.source_dir = args.source.absolute()
        if args.out is not None:
            config.out_dir = args.out.absolute()
        if args.release:
            config.static.release_version = args.release
        try:
            report = Orchestrator(config).run_build()
        except FileNotFoundError as exc:
            parser.exit(1, f"{exc}\n")
        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            print(report.render())
        if report.exit_code:
            parser.exit(report.exit_code)
    elif args.command == "serve":
        if args.host:
            config.serve.host = args.host
        if args.port:
            config.serve.port = args.port
        from .service import run_service

        run_service(Orchestrator(config))
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _configure_from(args: argparse.Namespace, config: AssetGenConfig) -> None:
    configure_logging(
        verbose=bool(args.verbose),
        log_file=args.log_file or config.logging.file,
        level=config.logging.level,
    )


def _run_render(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    module = args.module
    if not module.is_file():
        parser.exit(1, f"Module not found: {module}\n")
    try:
        config = load_config(module.parent)
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")
    _configure_from(args, config)
    engine = AssetEngine.from_config(config)

    async def _render() -> str:
        try:
            result = await engine.render_path(module)
        finally:
            await engine.close()
        return result.text

    try:
        text = asyncio.run(_render())
    except AssetGenError as exc:
        parser.exit(1, f"assetgen render failed: {exc.summary()}\nRun with --verbose for more details.\n")
    sys.stdout.write(text)


if __name__ == "__main__":
    main(sys.argv[1:])
