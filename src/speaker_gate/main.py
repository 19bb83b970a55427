"""Command-line interface for audio-activity speaker control."""

import argparse
import asyncio
import logging
import sys

from .monitoring.activity_log import ActivityLog
from .monitoring.config import DEFAULT_DATABASE_PATH, DEFAULT_GATEWAY_URL, DEFAULT_RECORDINGS_DIR
from .monitoring.controller import MonitoringController
from .monitoring.devices import DeviceRegistry
from .monitoring.exceptions import MonitoringError
from .monitoring.gateway import HttpDeviceGateway
from .monitoring.level_meter import LevelMeter, list_input_devices
from .monitoring.logging_utils import configure_logging
from .monitoring.models import LogEntry, LogEntryType
from .monitoring.recorder import LocalBlobStore, Recorder
from .monitoring.settings_store import SettingsStore

ENTRY_ICONS = {
    LogEntryType.AUDIO_DETECTED: "🔊",
    LogEntryType.AUDIO_SILENT: "🔇",
    LogEntryType.SPEAKERS_ENABLED: "✅",
    LogEntryType.SPEAKERS_DISABLED: "⏹️",
    LogEntryType.VOLUME_CHANGE: "🎚️",
}


class SpeakerGateCLI:
    """Command-line runner for a monitoring session."""

    def __init__(
        self,
        controller: MonitoringController,
        input_device: str | None = None,
        select: list[str] | None = None,
        export_log: str | None = None,
    ) -> None:
        """
        Initialize the CLI.

        Args:
            controller: Monitoring controller to drive
            input_device: Input to monitor (defaults to the saved input)
            select: Speaker group ids to select before starting
            export_log: Path to write the activity log CSV on exit
        """
        self._controller = controller
        self._input_device = input_device
        self._select = select
        self._export_log = export_log
        self._running = False
        self._entry_count = 0
        self._controller.activity_log.set_entry_callback(self._on_log_entry)

    async def start_monitoring(self) -> None:
        """Restore settings and start monitoring."""
        try:
            print("🎤 Starting speaker monitoring...")
            await self._controller.initialize()

            if self._select is not None:
                await self._controller.set_selected_devices(self._select)
            if not self._controller.selected_devices:
                print("⚠️  No speakers selected, activity will be logged only.")

            if self._controller.resume_task is None or self._input_device is not None:
                await self._controller.start_monitoring(self._input_device)
            else:
                await self._controller.resume_task

            self._running = self._controller.is_monitoring
            if self._running:
                cfg = self._controller.config
                print(
                    f"✅ Monitoring {self._controller.meter.device_name or 'default input'} "
                    f"(threshold {cfg.audio_threshold_percent}%, "
                    f"{len(self._controller.selected_devices)} speaker group(s))"
                )
                print("   Press Ctrl+C to stop.")
            elif self._controller.last_error:
                print(f"❌ Could not start monitoring: {self._controller.last_error}")

        except MonitoringError as e:
            self._running = False
            print(f"❌ Error starting monitoring: {e}")

    async def stop_monitoring(self) -> None:
        """Shut the session down and export the log if requested."""
        print("🛑 Stopping speaker monitoring...")
        await self._controller.close()
        self._running = False

        if self._export_log:
            try:
                path = self._controller.activity_log.write_csv(self._export_log)
                print(f"📄 Activity log exported to {path}")
            except OSError as e:
                print(f"❌ Failed to export activity log: {e}")

    def _on_log_entry(self, entry: LogEntry) -> None:
        self._entry_count += 1
        icon = ENTRY_ICONS.get(entry.type, "•")
        stamp = entry.timestamp.strftime("%H:%M:%S")
        print(f"[{stamp}] {icon} {entry.message}")

    async def run(self) -> None:
        """
        Main CLI run loop.

        Handles startup, main loop, and graceful shutdown.
        """
        try:
            await self.start_monitoring()

            while self._running and self._controller.is_monitoring:
                await asyncio.sleep(0.1)

            if self._running and self._controller.last_error:
                print(f"❌ Monitoring stopped: {self._controller.last_error}")

        except (KeyboardInterrupt, asyncio.CancelledError):
            print("\n👋 Goodbye!")
        except Exception as e:
            print(f"❌ Unexpected error: {e}")
        finally:
            await self.stop_monitoring()


def build_controller(args: argparse.Namespace) -> MonitoringController:
    """
    Assemble a controller from command-line arguments.

    Raises:
        ConfigError: If the device registry file is invalid
    """
    registry = DeviceRegistry.from_file(args.devices) if args.devices else DeviceRegistry()
    recorder = Recorder(LocalBlobStore(args.recordings_dir))
    return MonitoringController(
        store=SettingsStore(args.db),
        registry=registry,
        gateway=HttpDeviceGateway(args.gateway_url),
        meter=LevelMeter(),
        recorder=recorder,
        activity_log=ActivityLog(),
        user_id=args.user_id,
    )


async def main(args: argparse.Namespace) -> None:
    """Main entry point for the CLI application."""
    cli = SpeakerGateCLI(
        build_controller(args),
        input_device=args.input,
        select=args.select,
        export_log=args.export_log,
    )
    try:
        await cli.run()
    except KeyboardInterrupt:
        pass  # Graceful shutdown already handled in cli.run()


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Speaker Gate - Power network speakers on while audio is present",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  speaker-gate --list-inputs                                # Show input devices
  speaker-gate --devices devices.json --select adapter-1    # Drive one paging adapter
  speaker-gate --input 2 --export-log activity.csv          # Monitor input 2, export on exit
  speaker-gate --gateway-url http://bridge:3000/api/algo    # Custom device bridge
  speaker-gate --user-id alice --recordings-dir /tmp/clips  # Keep recordings
  speaker-gate -v                                           # Verbose logging

Controls:
  Ctrl+C    - Stop and exit gracefully (speakers are switched off)

Monitoring resumes automatically on the next start if it was running when the
process exited.
        """,
    )

    parser.add_argument(
        "--db",
        type=str,
        default=DEFAULT_DATABASE_PATH,
        metavar="PATH",
        help=f"Settings database (default: {DEFAULT_DATABASE_PATH})",
    )

    parser.add_argument(
        "--devices",
        type=str,
        default=None,
        metavar="FILE",
        help="JSON device registry of paging adapters and speakers",
    )

    parser.add_argument(
        "--gateway-url",
        type=str,
        default=DEFAULT_GATEWAY_URL,
        metavar="URL",
        help=f"Base URL of the device control bridge (default: {DEFAULT_GATEWAY_URL})",
    )

    parser.add_argument(
        "--input",
        type=str,
        default=None,
        metavar="ID",
        help="Input device index or name fragment (default: saved or system default)",
    )

    parser.add_argument(
        "--select",
        nargs="+",
        default=None,
        metavar="GROUP",
        help="Speaker group ids to drive (replaces the saved selection)",
    )

    parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        metavar="ID",
        help="User id owning recordings (recordings are skipped without one)",
    )

    parser.add_argument(
        "--recordings-dir",
        type=str,
        default=DEFAULT_RECORDINGS_DIR,
        metavar="PATH",
        help=f"Directory recordings are stored in (default: {DEFAULT_RECORDINGS_DIR})",
    )

    parser.add_argument(
        "--export-log",
        type=str,
        default=None,
        metavar="PATH",
        help="Write the activity log as CSV to PATH on exit",
    )

    parser.add_argument(
        "--list-inputs",
        action="store_true",
        help="List available audio input devices and exit",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging and debug information",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable trace logging (most verbose, includes per-sample levels)",
    )

    return parser


def print_input_devices() -> bool:
    """
    Print the available input devices.

    Returns:
        True if devices could be listed, False otherwise
    """
    try:
        devices = list_input_devices()
    except OSError as e:
        logging.error(f"Error listing input devices: {e}")
        return False

    if not devices:
        print("⚠️  No input devices found.")
        return True

    print("🎤 Input devices:")
    for device in devices:
        print(
            f"  [{device['index']}] {device['name']} "
            f"({device['channels']} ch, {int(device['sample_rate'])} Hz)"
        )
    return True


def handle_arguments(args: argparse.Namespace) -> tuple[bool, bool]:
    """
    Handle parsed command-line arguments.

    Args:
        args: Parsed arguments from argparse

    Returns:
        Tuple of (success, should_continue):
        - success: True if all operations succeeded, False if any failed
        - should_continue: True if execution should continue, False if it should stop
    """
    configure_logging(verbose=args.verbose, trace=args.trace)

    if args.list_inputs:
        if print_input_devices():
            return True, False
        print("❌ Failed to list input devices.")
        return False, False

    return True, True


def cli_entry_with_args() -> None:
    """CLI entry point with argument parsing."""
    parser = create_argument_parser()

    try:
        args = parser.parse_args()

        success, should_continue = handle_arguments(args)

        if not success:
            sys.exit(1)

        if not should_continue:
            sys.exit(0)

        asyncio.run(main(args))

    except KeyboardInterrupt:
        pass  # Graceful shutdown
    except SystemExit:
        raise
    except MonitoringError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    cli_entry_with_args()
