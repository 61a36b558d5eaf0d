from __future__ import annotations

import argparse
import os
import sys
import tomllib
from dataclasses import replace
from typing import Callable

from . import __version__
from .client import ClientService
from .config import (
    ClientRuntimeConfig,
    RuntimeConfig,
    ServerRuntimeConfig,
    apply_config_data,
    load_toml,
)
from .console import ConsoleLoop
from .errors import ConfigurationError, StartupError
from .logging_config import configure_logging
from .paths import default_config_path
from .service import ServerService
from .tcp import TcpClientTransport, TcpServerTransport
from .util import expand_path, parse_port


def _port_or_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return parse_port(value)
    except ConfigurationError:
        return default


def _apply_config_file(
    cfg: RuntimeConfig, path: str | None, *, section: str
) -> RuntimeConfig:
    explicit = path is not None
    config_path = expand_path(path) if path is not None else str(default_config_path())

    if not os.path.exists(config_path):
        if explicit:
            raise StartupError(f"config file not found: {config_path}")
        return cfg

    try:
        data = load_toml(config_path)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise StartupError(f"failed to read config {config_path}: {e}") from e

    cfg = apply_config_data(cfg, data, section=section)
    cfg = replace(cfg, config_path=config_path)
    try:
        return replace(cfg, port=parse_port(cfg.port))
    except ConfigurationError as e:
        raise StartupError(f"{config_path}: {e}") from e


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        default=None,
        help=f"Path to a TOML config file (default: {default_config_path()}, if present)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")


def _build_server_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="simplechat-server", description="Run a simplechat server")
    p.add_argument("port", nargs="?", default=None, help="Port to listen on (default: 5555)")
    p.add_argument("--bind", default=None, help="Address to bind (default: all interfaces)")
    _add_common_args(p)
    return p


def _build_client_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="simplechat-client", description="Connect to a simplechat server")
    p.add_argument("login_id", nargs="?", default=None, help="Login id announced to the server")
    p.add_argument("host", nargs="?", default=None, help="Server host (default: localhost)")
    p.add_argument("port", nargs="?", default=None, help="Server port (default: 5555)")
    _add_common_args(p)
    return p


def _apply_log_overrides(cfg: RuntimeConfig, args: argparse.Namespace) -> RuntimeConfig:
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    return cfg


def build_server_config(args: argparse.Namespace) -> ServerRuntimeConfig:
    cfg = _apply_config_file(ServerRuntimeConfig(), args.config, section="server")
    cfg = replace(cfg, port=_port_or_default(args.port, cfg.port))
    if args.bind is not None:
        cfg = replace(cfg, bind_host=str(args.bind))
    return _apply_log_overrides(cfg, args)


def build_client_config(args: argparse.Namespace) -> ClientRuntimeConfig:
    cfg = _apply_config_file(ClientRuntimeConfig(), args.config, section="client")
    if args.login_id is not None:
        cfg = replace(cfg, login_id=args.login_id)
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    cfg = replace(cfg, port=_port_or_default(args.port, cfg.port))
    return _apply_log_overrides(cfg, args)


def server_main(
    argv: list[str] | None = None,
    *,
    read_line: Callable[[], str] = input,
) -> int:
    args = _build_server_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_server_config(args)
    except StartupError as e:
        print(f"ERROR - {e}", file=sys.stderr)
        return 1

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    transport = TcpServerTransport(
        cfg.port, bind_host=cfg.bind_host, max_frame_bytes=cfg.max_frame_bytes
    )
    svc = ServerService(cfg, transport)

    try:
        svc.start()
    except StartupError as e:
        print(f"ERROR - Could not listen for clients! {e}", file=sys.stderr)
        return 1

    console = ConsoleLoop(
        svc.dispatcher, svc.handle_operator_message, svc.shutdown_event, read_line=read_line
    )
    try:
        console.run()
    except KeyboardInterrupt:
        svc.quit()
    return 0


def client_main(
    argv: list[str] | None = None,
    *,
    read_line: Callable[[], str] = input,
) -> int:
    args = _build_client_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_client_config(args)
    except StartupError as e:
        print(f"ERROR - {e}", file=sys.stderr)
        return 1

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    transport = TcpClientTransport(
        cfg.host,
        cfg.port,
        connect_timeout_s=cfg.connect_timeout_s,
        max_frame_bytes=cfg.max_frame_bytes,
    )
    try:
        client = ClientService(cfg, transport)
    except ConfigurationError as e:
        print(f"ERROR - {e}", file=sys.stderr)
        return 1

    try:
        client.connect()
    except StartupError as e:
        print(f"Error: Can't setup connection! Terminating client. ({e})", file=sys.stderr)
        return 1

    console = ConsoleLoop(
        client.dispatcher, client.send_message, client.shutdown_event, read_line=read_line
    )
    try:
        console.run()
    except KeyboardInterrupt:
        client.quit()
    return 0
