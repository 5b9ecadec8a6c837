"""Main application entry point for LiveScribe."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from pubsub import pub
from rich.console import Console
from rich.table import Table

from .config import LiveScribeConfig
from .models.transcription import TranscriptionResult
from .services import SessionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "livescribe.yaml"


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = LiveScribeConfig(resolve_config_path(config_path))
        # Set up logging (override config with command line if specified)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.orchestrator: Optional[SessionOrchestrator] = None

    def init(self):
        logger.info("Initializing services...")
        self.orchestrator = SessionOrchestrator(self.config)
        self.orchestrator.initialize()

        pub.subscribe(self._on_result, self.orchestrator.transcription_publisher.result_topic)
        pub.subscribe(self._on_error, self.orchestrator.transcription_publisher.error_topic)
        pub.subscribe(self._on_error, self.orchestrator.audio_publisher.error_topic)

    def _on_result(self, result: TranscriptionResult) -> None:
        if result.is_final:
            self.console.print(f"[{result.timestamp:%H:%M:%S}] {result.text}", style="green", markup=False)

    def _on_error(self, message: str) -> None:
        self.console.print(f"Error: {message}", style="bold red", markup=False)

    async def run(self, duration: int) -> bool:
        """Record until ``duration`` seconds pass (0 means until interrupted)."""
        result = await self.orchestrator.start_session()
        if not result["success"]:
            self.console.print(f"Could not start: {result['error']}", style="bold red", markup=False)
            return False

        self.console.print("Recording... press Ctrl+C to stop", style="blue")
        try:
            if duration:
                await asyncio.sleep(duration)
            else:
                while self.orchestrator.is_recording:
                    await asyncio.sleep(1)
        finally:
            stopped = await self.orchestrator.stop_session()
            self._print_summary(stopped)
        return True

    def _print_summary(self, stopped: dict) -> None:
        transcript = self.orchestrator.full_transcript
        self.console.rule("Transcript")
        self.console.print(transcript or "(No transcript)", markup=False)
        if stopped.get("audio_path"):
            self.console.print(f"Audio saved to {stopped['audio_path']}", style="dim", markup=False)

    async def cleanup(self):
        if self.orchestrator is not None:
            await self.orchestrator.dispose()

    async def serve(self, duration: int) -> bool:
        self.init()
        try:
            return await self.run(duration)
        finally:
            await self.cleanup()

    def add_key(self, key: str) -> None:
        store = self._key_store()
        before = store.key_count
        store.add_key(key)
        if store.key_count > before:
            self.console.print(f"API key added ({store.key_count} configured)", style="green")
        else:
            self.console.print("API key is empty or already configured", style="yellow")

    def remove_key(self, index: int) -> None:
        store = self._key_store()
        before = store.key_count
        store.remove_key(index)
        if store.key_count < before:
            self.console.print(f"API key {index} removed ({store.key_count} left)", style="green")
        else:
            self.console.print(f"No API key at index {index}", style="yellow")

    def show_history(self) -> None:
        from .storage import PreferenceStore, RecordingStore
        sessions = RecordingStore(PreferenceStore(self.config.get_preferences_path())).get_sessions()
        if not sessions:
            self.console.print("No saved sessions", style="dim")
            return

        table = Table(title="Saved sessions")
        table.add_column("ID", style="cyan")
        table.add_column("Started")
        table.add_column("Duration", justify="right")
        table.add_column("Transcript")
        table.add_column("Audio", style="dim")
        for session in sessions:
            table.add_row(
                session.id,
                f"{session.date_time:%Y-%m-%d %H:%M:%S}",
                f"{session.duration.total_seconds():.1f}s",
                session.transcript,
                session.audio_path or "",
            )
        self.console.print(table)

    def delete_session(self, session_id: str) -> None:
        from .storage import PreferenceStore, RecordingStore
        RecordingStore(PreferenceStore(self.config.get_preferences_path())).delete_session(session_id)
        self.console.print(f"Session {session_id} deleted", style="green")

    def _key_store(self):
        from .storage import KeyRotationStore, PreferenceStore
        store = KeyRotationStore(
            PreferenceStore(self.config.get_preferences_path()),
            self.config.get_default_api_keys(),
        )
        store.load()
        return store


def resolve_config_path(config_path: Optional[str]) -> Optional[str]:
    """Use the given path, else ``livescribe.yaml`` in the working directory if present."""
    if config_path:
        return config_path
    if Path(DEFAULT_CONFIG_FILE).exists():
        return DEFAULT_CONFIG_FILE
    return None


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'data/logs/livescribe.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("LiveScribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for LiveScribe."""
    parser = argparse.ArgumentParser(
        description="LiveScribe - Real-time streaming transcription",
        epilog="Without a command, records until Ctrl+C (or --duration) and saves the session."
    )

    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to configuration YAML file (default: looks for {DEFAULT_CONFIG_FILE})"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Record for this many seconds, then stop (default: 0, until Ctrl+C)"
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--add-key", metavar="KEY", help="Add an AssemblyAI API key and exit")
    commands.add_argument("--remove-key", metavar="INDEX", type=int, help="Remove the API key at INDEX and exit")
    commands.add_argument("--history", action="store_true", help="List saved sessions and exit")
    commands.add_argument("--delete-session", metavar="ID", help="Delete a saved session and exit")

    parser.add_argument(
        "--version",
        action="version",
        version="LiveScribe v0.1.0"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.add_key is not None:
            server.add_key(args.add_key)
        elif args.remove_key is not None:
            server.remove_key(args.remove_key)
        elif args.history:
            server.show_history()
        elif args.delete_session is not None:
            server.delete_session(args.delete_session)
        elif not asyncio.run(server.serve(args.duration)):
            sys.exit(1)
    except KeyboardInterrupt:
        server.console.print("\nGoodbye!")
    except Exception as e:
        server.console.print(f"Error: {e}", style="bold red", markup=False)
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
