"""
Fangwen · Scheduled URL Visitor -- Entry Point.

Usage: fangwen
       fangwen --config /path/to/config.yaml
       fangwen --targets /path/to/urls.json --port 3000
       fangwen --version
       python -m fangwen
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from fangwen import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Kommandozeilen-Argumente parsen."""
    parser = argparse.ArgumentParser(
        prog="fangwen",
        description="Fangwen · Scheduled URL Visitor -- periodische, gejitterte HTTP-Besuche",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Fangwen v{__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Pfad zur config.yaml (Default: ~/.fangwen/config.yaml)",
    )
    parser.add_argument(
        "--targets",
        type=Path,
        default=None,
        help="Pfad zur Ziel-Datei (Default: ~/.fangwen/urls.json)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log-Level überschreiben",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind-Adresse der Control-API",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port der Control-API (Default: 3000)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Haupteintrittspunkt für Fangwen."""
    args = parse_args(argv)

    # 0. .env-Datei laden (zuerst Projekt-.env, dann User-.env)
    load_dotenv(Path(".env"), override=False)
    load_dotenv(Path.home() / ".fangwen" / ".env", override=True)

    # 1. Konfiguration laden, CLI-Argumente haben Vorrang
    from fangwen.config import ensure_directory_structure, load_config

    config = load_config(args.config)
    if args.targets is not None:
        config.targets_file = args.targets.expanduser().resolve()
    if args.host:
        config.api.host = args.host
    if args.port:
        config.api.port = args.port

    # 2. Verzeichnisstruktur sicherstellen
    created = ensure_directory_structure(config)

    # 3. Logging initialisieren
    from fangwen.utils.logging import get_logger, setup_logging

    log_level = args.log_level or config.logging.level
    setup_logging(
        level=log_level,
        log_dir=config.logs_dir,
        json_logs=config.logging.json_logs,
        console=config.logging.console,
    )
    log = get_logger("fangwen")

    log.info(
        "fangwen_starting",
        version=__version__,
        home=str(config.fangwen_home),
        targets_file=str(config.targets_path),
        log_level=log_level,
    )
    for path in created:
        log.info("created_path", path=path)

    _print_banner(config)

    async def run() -> int:
        """Startet Scheduler und Control-API als asynchrone Hauptschleife."""
        import uvicorn

        from fangwen.app import FangwenApp
        from fangwen.channels.api import ControlAPI
        from fangwen.errors import ConfigError

        runtime = FangwenApp(config)
        try:
            await runtime.initialize()
        except ConfigError as exc:
            log.error("startup_failed", error=str(exc), **exc.details)
            await runtime.shutdown()
            return 1

        if not config.api.api_token:
            log.warning("api_token_missing", hint="FANGWEN_API_API_TOKEN setzen")

        server = uvicorn.Server(
            uvicorn.Config(
                ControlAPI(runtime).app,
                host=config.api.host,
                port=config.api.port,
                log_level="warning",
            )
        )
        log.info("control_api_started", host=config.api.host, port=config.api.port)
        try:
            await server.serve()
        finally:
            await runtime.shutdown()
            log.info("fangwen_stopped")
        return 0

    try:
        exit_code = asyncio.run(run())
    except KeyboardInterrupt:
        log.info("fangwen_shutdown_by_user")
        exit_code = 0
    sys.exit(exit_code)


def _print_banner(config: Any) -> None:
    """Startup-Banner auf der Konsole (bewusst print statt Logger)."""
    print(f"\n{'=' * 60}")
    print(f"  FANGWEN · Scheduled URL Visitor v{__version__}")
    print(f"  Home:    {config.fangwen_home}")
    print(f"  Targets: {config.targets_path}")
    print(f"  API:     http://{config.api.host}:{config.api.port}")
    print(f"{'=' * 60}\n")


if __name__ == "__main__":
    main()
