"""
VOICETURN Application Entry Point

Runs one voice call from the terminal: loads configuration, opens the
backend clients, starts the orchestrator and maps keyboard commands onto
its controls until the user quits or a signal arrives.

Usage:
    voiceturn                           # Run with default config
    voiceturn --config /path/to/config.yaml
    voiceturn --mode push_to_talk --delivery buffered
    voiceturn --dry-run                 # Validate config without starting
    voiceturn --list-devices

Commands while running:
    <Enter>     talk (continuous: listen / stop / interrupt;
                push-to-talk: press, then Enter again to release)
    m           toggle microphone mute
    s           toggle speaker
    t <text>    send typed text instead of speech
    q           end the call
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import TYPE_CHECKING, Optional

from voiceturn import __version__
from voiceturn.backends import BackendClients
from voiceturn.capture import describe_input_devices
from voiceturn.config import VoiceTurnConfig, load_config
from voiceturn.exceptions import ConfigurationError, DeviceUnavailable, VoiceTurnError
from voiceturn.logging_config import get_logger, setup_logging
from voiceturn.notices import Notice
from voiceturn.orchestrator import TurnTakingOrchestrator, create_orchestrator
from voiceturn.session import Phase, Utterance

if TYPE_CHECKING:
    from types import FrameType

__all__ = ["main", "async_main", "create_parser", "apply_overrides", "handle_command"]

logger = get_logger(__name__)


# =============================================================================
# Argument Parser
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="voiceturn",
        description="VOICETURN voice conversation orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Configuration
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        metavar="PATH",
        help="Path to configuration file (default: auto-discover)",
    )

    # Logging
    parser.add_argument(
        "-l",
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set logging level (overrides config file)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        metavar="PATH",
        help="Path to log file (default: stdout only)",
    )

    # Conversation
    parser.add_argument(
        "--mode",
        choices=["continuous", "push_to_talk"],
        help="Listening mode (overrides config file)",
    )
    parser.add_argument(
        "--delivery",
        choices=["streaming", "buffered"],
        help="Reply audio delivery (overrides config file)",
    )
    parser.add_argument(
        "--language",
        type=str,
        help="Recognition language code, e.g. ar or en",
    )
    parser.add_argument(
        "--voice",
        type=str,
        metavar="VOICE_ID",
        help="Synthesis voice identifier",
    )
    parser.add_argument(
        "--no-welcome",
        action="store_true",
        help="Start listening immediately without the welcome utterance",
    )

    # Operation modes
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting a call",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio input devices and exit",
    )

    return parser


def apply_overrides(config: VoiceTurnConfig, args: argparse.Namespace) -> VoiceTurnConfig:
    """Apply command-line overrides to a loaded configuration."""
    if args.mode:
        config.listening.mode = args.mode
    if args.delivery:
        config.playback.delivery = args.delivery
    if args.language:
        config.listening.language = args.language
    if args.voice:
        config.playback.voice_id = args.voice
    if args.no_welcome:
        config.turn.welcome_text = None
    return config


# =============================================================================
# Signal Handlers
# =============================================================================


class GracefulShutdown:
    """Ends the call cleanly on SIGINT / SIGTERM; a second signal exits at once."""

    def __init__(self) -> None:
        self._shutdown_requested = False
        self._shutdown_event: asyncio.Event | None = None
        self._original_handlers: dict[int, signal.Handlers] = {}

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def install_handlers(self) -> None:
        self._original_handlers[signal.SIGINT] = signal.signal(
            signal.SIGINT, self._handle_signal
        )
        self._original_handlers[signal.SIGTERM] = signal.signal(
            signal.SIGTERM, self._handle_signal
        )
        logger.debug("Signal handlers installed")

    def restore_handlers(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def request(self) -> None:
        """Request shutdown from code (e.g. the quit command)."""
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        signal_name = signal.Signals(signum).name
        if self._shutdown_requested:
            logger.warning(f"Received {signal_name} again - forcing immediate exit")
            sys.exit(1)
        logger.info(f"Received {signal_name} - ending call...")
        self.request()

    def get_shutdown_event(self) -> asyncio.Event:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
            if self._shutdown_requested:
                self._shutdown_event.set()
        return self._shutdown_event


# =============================================================================
# Terminal front end
# =============================================================================


def print_banner(config: VoiceTurnConfig) -> None:
    listening, playback = config.listening, config.playback
    print(f"VOICETURN v{__version__}")
    print(f"  Mode:     {listening.mode} ({listening.language})")
    print(f"  Delivery: {playback.delivery} (voice {playback.voice_id})")
    print(f"  Backend:  {config.backend.base_url}")
    print("  Commands: <Enter> talk | m mute | s speaker | t <text> | q quit")


def handle_command(orchestrator: TurnTakingOrchestrator, line: str) -> bool:
    """
    Apply one terminal command.

    Args:
        orchestrator: Running orchestrator
        line: Raw input line

    Returns:
        False when the user asked to quit
    """
    command = line.strip()
    session = orchestrator.session

    if not command:
        if orchestrator.timings.push_to_talk:
            if session.recording:
                orchestrator.release_to_talk()
            else:
                orchestrator.press_to_talk()
        elif session.phase in (Phase.IDLE, Phase.ERROR_RECOVERY):
            orchestrator.request_listen()
        else:
            orchestrator.press_to_talk()
        return True

    if command == "q":
        return False
    if command == "m":
        orchestrator.set_muted(not session.muted)
        print(f"  microphone {'muted' if orchestrator.session.muted else 'on'}")
        return True
    if command == "s":
        orchestrator.set_speaker_enabled(not session.speaker_enabled)
        print(f"  speaker {'on' if orchestrator.session.speaker_enabled else 'off'}")
        return True
    if command.startswith("t "):
        orchestrator.submit_text(command[2:])
        return True

    print(f"  unknown command: {command!r}")
    return True


def _print_phase(phase: Phase) -> None:
    print(f"  [{phase.value}]")


def _print_utterance(utterance: Utterance) -> None:
    label = "you" if utterance.speaker.value == "user" else "assistant"
    print(f"{label}: {utterance.text}")


def _print_notice(notice: Notice, shown: bool) -> None:
    if shown:
        print(f"  ! {notice.message}")


# =============================================================================
# Main Entry Points
# =============================================================================


async def async_main(args: argparse.Namespace, config: VoiceTurnConfig) -> int:
    """Run one call until quit, EOF or a shutdown signal.

    Returns:
        Exit code (0 for success)
    """
    shutdown = get_shutdown_handler()
    shutdown_event = shutdown.get_shutdown_event()
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[Optional[str]] = asyncio.Queue()

    def _on_stdin() -> None:
        line = sys.stdin.readline()
        lines.put_nowait(line if line else None)

    async with BackendClients(config.backend, config.playback) as clients:
        orchestrator = create_orchestrator(
            config,
            transcriber=clients.transcription,
            synthesizer=clients.synthesis,
            reasoning=clients.reasoning,
        )
        orchestrator.register_callback(_print_phase)
        orchestrator.register_utterance_callback(_print_utterance)
        orchestrator.notices.register_callback(_print_notice)

        loop.add_reader(sys.stdin.fileno(), _on_stdin)
        try:
            orchestrator.start_call()
            while not shutdown_event.is_set():
                getter = asyncio.ensure_future(lines.get())
                waiter = asyncio.ensure_future(shutdown_event.wait())
                done, pending = await asyncio.wait(
                    {getter, waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()
                if getter not in done:
                    break
                line = getter.result()
                if line is None or not handle_command(orchestrator, line):
                    break
        except Exception as e:
            logger.exception(f"Fatal error in main loop: {e}")
            return 1
        finally:
            loop.remove_reader(sys.stdin.fileno())
            await orchestrator.end_call()
            metrics = orchestrator.get_metrics()
            logger.info(
                f"Session summary: {metrics['turns']} turns, "
                f"{metrics['replies']} replies, {metrics['barge_ins']} barge-ins"
            )
    return 0


_shutdown_handler = GracefulShutdown()


def get_shutdown_handler() -> GracefulShutdown:
    return _shutdown_handler


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the voiceturn command.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level or "INFO", log_file=args.log_file)

    if args.list_devices:
        try:
            devices = describe_input_devices()
        except DeviceUnavailable as e:
            logger.error(f"Cannot list devices: {e}")
            return 1
        for device in devices:
            print(f"  [{device['index']}] {device['name']} ({device['channels']} ch)")
        if not devices:
            print("  no input devices found")
        return 0

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    apply_overrides(config, args)

    if args.log_level is None or (args.log_file is None and config.log_file):
        setup_logging(
            log_level=args.log_level or config.log_level,
            log_file=args.log_file or config.log_file,
        )

    print_banner(config)

    if args.dry_run:
        logger.info("Dry run mode - configuration valid, exiting")
        print("Configuration is valid")
        return 0

    shutdown = get_shutdown_handler()
    shutdown.install_handlers()

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except VoiceTurnError as e:
        logger.error(f"VOICETURN error: {e}")
        return 1
    finally:
        shutdown.restore_handlers()
        logger.info("VOICETURN shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
