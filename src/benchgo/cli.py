"""
benchgo - Command line entry points.

`benchgo` runs an interactive peer: it listens for sessions and messages
and reads commands from the terminal. The first host typed at the
``no session>`` prompt opens a session; after that every line is sent on
the current session.

`benchgo-keygen` creates a password-protected identity file.
"""

import argparse
import asyncio
import getpass
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import Config
from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    DEFAULT_RSA_KEY_SIZE,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILENAME,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    LOGS_DIR,
    UI_MAX_HISTORY_DISPLAY,
)
from .errors import BenchgoError
from .handshake import establish_outbound
from .keystore import FileKeyStore, KeyStore, MemoryKeyStore
from .messaging import send
from .server import SessionServer
from .session import MemorySessionRegistry, Session, SessionRegistry
from .utils import default_data_dir, format_fingerprint, format_timestamp, truncate_string, validate_remote

logger = logging.getLogger(__name__)

NO_SESSION_PROMPT = "no session> "


def configure_logging(config: Config, data_dir: Path, debug: bool = False,
                      console: Optional[Console] = None) -> logging.Logger:
    """
    Attach handlers to the package logger according to the ``logging`` section.

    Args:
        config: Loaded configuration
        data_dir: Data directory; log files go to its ``logs`` subdirectory
        debug: Force DEBUG level and console output
        console: Console used by the console handler

    Returns:
        The configured package logger
    """
    level_name = "DEBUG" if debug else str(config.get("logging", "level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    package_logger = logging.getLogger(APP_NAME)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    if config.get("logging", "file_logging", True):
        log_dir = Path(data_dir) / LOGS_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        package_logger.addHandler(file_handler)

    if debug or config.get("logging", "console_logging", False):
        console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=debug)
        console_handler.setLevel(level)
        package_logger.addHandler(console_handler)

    if not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())

    return package_logger


def build_key_store(config: Config, data_dir: Path, password: Optional[str] = None) -> KeyStore:
    """
    Create the identity key store selected by the ``identity`` section.

    A persistent identity asks for its password unless one is given.
    """
    key_size = config.get("crypto", "rsa_key_size", DEFAULT_RSA_KEY_SIZE)
    if not config.get("identity", "persist", False):
        return MemoryKeyStore(key_size=key_size)

    path = Path(data_dir) / config.get("identity", "filename")
    if password is None:
        password = getpass.getpass(f"Password for {path}: ")
    return FileKeyStore(path, password, key_size=key_size)


class InteractivePeer:
    """Terminal front end: one server plus a prompt loop."""

    def __init__(self, config: Config, key_store: KeyStore,
                 registry: Optional[SessionRegistry] = None, console: Optional[Console] = None):
        self.config = config
        self.key_store = key_store
        self.registry = registry if registry is not None else MemorySessionRegistry()
        self.console = console or Console()
        self.current: Optional[Session] = None

        self.server = SessionServer.from_config(config, key_store, self.registry)
        self.server.on_session = self._on_session
        self.server.on_message = self._on_message

    @property
    def prompt(self) -> str:
        if self.current is None:
            return NO_SESSION_PROMPT
        return f"{self.current.peer_address}> "

    def _on_session(self, session: Session) -> None:
        self.console.print(
            f"[green]Session {session.identifier.hex()} opened by {session.peer_address}[/green]"
        )
        if self.current is None:
            self.current = session

    def _on_message(self, session: Session, plaintext: str) -> None:
        self.console.print(f"[bold cyan]{session.peer_address}[/bold cyan]: {escape(plaintext)}")

    async def connect(self, host: str) -> Optional[Session]:
        """Open a session with ``host`` and make it current."""
        if not validate_remote(host):
            self.console.print(f"[red]Not a valid host: {escape(host)}[/red]")
            return None

        self.console.print(f"Opening session with {host}...")
        session = await establish_outbound(
            host,
            self.key_store,
            self.registry,
            port=self.config.get("network", "port"),
            connect_timeout=self.config.get("network", "connect_timeout"),
            timeout=self.config.get("network", "handshake_timeout"),
            local_address=self.config.get("network", "local_address") or None,
        )
        self.current = session
        self.console.print(f"[green]Session {session.identifier.hex()} established[/green]")
        return session

    def show_sessions(self) -> None:
        sessions = self.registry.sessions()
        if not sessions:
            self.console.print("No sessions")
            return

        table = Table(title="Sessions")
        table.add_column("Identifier", style="cyan")
        table.add_column("Peer")
        table.add_column("Established")
        table.add_column("Messages", justify="right")
        for session in sessions:
            marker = " *" if session is self.current else ""
            table.add_row(
                session.identifier.hex() + marker,
                f"{session.peer_address}:{session.peer_port}",
                format_timestamp(session.created_at),
                str(len(session)),
            )
        self.console.print(table)

    def show_history(self) -> None:
        if self.current is None:
            self.console.print("No session")
            return

        for message in self.current.history[-UI_MAX_HISTORY_DISPLAY:]:
            who = "me" if message.outgoing else self.current.peer_address
            self.console.print(
                f"[dim]{format_timestamp(message.timestamp, '%H:%M:%S')}[/dim] "
                f"{who}: {escape(truncate_string(message.content, 200))}"
            )

    def show_fingerprint(self) -> None:
        self.console.print(f"Fingerprint: {format_fingerprint(self.key_store.fingerprint())}")

    async def handle_line(self, line: str) -> bool:
        """
        Act on one line of input.

        Returns:
            False when the loop should stop
        """
        line = line.strip()
        if not line:
            return True

        try:
            if line == "/quit":
                return False
            elif line == "/sessions":
                self.show_sessions()
            elif line == "/history":
                self.show_history()
            elif line == "/fingerprint":
                self.show_fingerprint()
            elif line.startswith("/connect"):
                parts = line.split()
                if len(parts) != 2:
                    self.console.print("Usage: /connect <host>")
                else:
                    await self.connect(parts[1])
            elif line.startswith("/"):
                self.console.print(f"Unknown command: {escape(line.split()[0])}")
            elif self.current is None:
                await self.connect(line)
            else:
                await send(
                    self.current,
                    line,
                    connect_timeout=self.config.get("network", "connect_timeout"),
                )
        except BenchgoError as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
        return True

    async def run(self) -> None:
        """Prewarm the identity key, start listening and run the prompt loop."""
        loop = asyncio.get_running_loop()

        if not self.key_store.is_loaded:
            self.console.print("Generating key. (This may take a while.)")
        await loop.run_in_executor(None, self.key_store.private_key)
        self.show_fingerprint()

        await self.server.start()
        try:
            while True:
                try:
                    line = await loop.run_in_executor(None, input, self.prompt)
                except EOFError:
                    break
                if not await self.handle_line(line):
                    break
        finally:
            await self.server.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="benchgo",
        description="benchgo - Encrypted peer-to-peer text sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  benchgo                       # Listen on the default port
  benchgo --port 9000           # Use a custom listen port
  benchgo --data-dir ~/benchgo  # Use a custom data directory
        """,
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument("--data-dir", type=str, default=None, help="Data directory for identity and logs")
    parser.add_argument("--config", type=str, default=None, help="Configuration file path")
    parser.add_argument("--port", type=int, default=None, help="Listen and connect port")
    parser.add_argument("--host", type=str, default=None, help="Address to listen on")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging to the console")
    return parser


def load_config(args: argparse.Namespace, data_dir: Path) -> Config:
    """Load configuration and apply command line overrides."""
    config = Config(Path(args.config) if args.config else data_dir / CONFIG_FILENAME)
    if args.port is not None:
        config.set("network", "port", args.port)
    if args.host is not None:
        config.set("network", "host", args.host)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the interactive peer."""
    args = build_parser().parse_args(argv)
    data_dir = default_data_dir(args.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    console = Console()
    try:
        config = load_config(args, data_dir)
        configure_logging(config, data_dir, debug=args.debug, console=console)
        key_store = build_key_store(config, data_dir)
        peer = InteractivePeer(config, key_store, console=console)
        asyncio.run(peer.run())
    except BenchgoError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1
    except OSError as e:
        console.print(f"[red]Cannot listen: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def keygen_main(argv: Optional[List[str]] = None) -> int:
    """Entry point for creating a persistent identity."""
    parser = argparse.ArgumentParser(
        prog="benchgo-keygen",
        description="Create a password-protected benchgo identity",
    )
    parser.add_argument("--data-dir", type=str, default=None, help="Data directory for the identity")
    parser.add_argument("--key-size", type=int, default=None, help="RSA modulus size in bits")
    parser.add_argument("--force", action="store_true", help="Replace an existing identity")
    args = parser.parse_args(argv)

    console = Console()
    data_dir = default_data_dir(args.data_dir)
    try:
        config = Config(data_dir / CONFIG_FILENAME)
        key_size = args.key_size or config.get("crypto", "rsa_key_size", DEFAULT_RSA_KEY_SIZE)
        path = data_dir / config.get("identity", "filename")

        if path.exists() and not args.force:
            console.print(f"[red]Identity already exists at {path} (use --force)[/red]")
            return 1

        password = getpass.getpass("New identity password: ")
        if password != getpass.getpass("Repeat password: "):
            console.print("[red]Passwords do not match[/red]")
            return 1

        console.print("Generating key. (This may take a while.)")
        key_store = FileKeyStore(path, password, key_size=key_size)
        key_store.regenerate()
        console.print(f"Identity written to {path}")
        console.print(f"Fingerprint: {format_fingerprint(key_store.fingerprint())}")
    except BenchgoError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
