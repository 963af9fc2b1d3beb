# usbportal/app/main.py
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Sequence

from ..adapters.bus_mock import PortalBusMock
from ..adapters.settings_local import SettingsLocal
from ..domain.devices import DeviceAcquireRequest, DeviceEvent
from ..domain.errors import PortalError
from ..domain.ports import UseCaseError
from ..domain.settings import PortalSettings
from ..usecases.error_mapping import map_portal_error
from ..usecases.sessions import UsbSession
from ..utils.logging import apply_preferences, configure_root, level_name
from .portal import UsbPortal

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usbportal",
        description="Enumerate, acquire and release USB devices through the desktop portal.",
    )
    parser.add_argument("--mock", action="store_true", help="use the in-memory broker")
    parser.add_argument("--system-bus", action="store_true", help="connect to the system bus")
    parser.add_argument("--settings-dir", default=".", help="directory holding usbportal_settings.json")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("enumerate", help="list devices known to the broker")

    acquire = sub.add_parser("acquire", help="acquire devices (ID or ID:rw)")
    acquire.add_argument("devices", nargs="+", metavar="ID[:rw]")

    release = sub.add_parser("release", help="release previously acquired devices")
    release.add_argument("devices", nargs="+", metavar="ID")

    monitor = sub.add_parser("monitor", help="print device events of a new session")
    monitor.add_argument("--seconds", type=float, default=10.0)
    return parser


def parse_device_arg(text: str) -> DeviceAcquireRequest:
    """``usb:001`` -> read-only request, ``usb:001:rw`` -> writable request."""
    value = text.strip()
    if value.endswith(":rw"):
        return DeviceAcquireRequest(device_id=value[: -len(":rw")], writable=True)
    if value.endswith(":ro"):
        value = value[: -len(":ro")]
    return DeviceAcquireRequest(device_id=value, writable=False)


def load_settings(args: argparse.Namespace) -> PortalSettings:
    storage = SettingsLocal(args.settings_dir)
    settings = PortalSettings.from_dict(storage.load_settings()).with_env_overrides()
    if args.system_bus:
        settings = replace(settings, bus_type="system")
    return settings


async def _open_portal(args: argparse.Namespace, settings: PortalSettings) -> UsbPortal:
    if args.mock:
        return UsbPortal(PortalBusMock.with_demo_devices(), max_finish_pages=settings.max_finish_pages)
    return await UsbPortal.connect(settings)


async def _run_command(args: argparse.Namespace, portal: UsbPortal) -> None:
    if args.command == "enumerate":
        devices = await portal.enumerate_devices()
        if not devices:
            print("No devices.")
        for device in devices:
            props = ", ".join(f"{key}={value}" for key, value in sorted(device.properties.items()))
            print(f"{device.device_id}\t{props}")
        return

    if args.command == "acquire":
        requests = [parse_device_arg(item) for item in args.devices]
        result = await portal.acquire_devices(None, requests)
        finished = await portal.finish_acquire_devices(result)
        for device in finished or list(result.devices):
            if device.success:
                print(f"{device.device_id}\tgranted fd={device.fd}")
            else:
                print(f"{device.device_id}\tdenied {device.error or ''}".rstrip())
        return

    if args.command == "release":
        released = await portal.release_devices(args.devices)
        print(f"Released {len(released)} device(s).")
        return

    if args.command == "monitor":
        usb_session = await portal.create_session()

        def _print_events(_session: UsbSession, events: List[DeviceEvent]) -> None:
            for event in events:
                print(f"{event.action or 'event'}\t{event.device_id}")

        with usb_session:
            usb_session.connect(_print_events)
            print(f"Monitoring {usb_session.path} for {args.seconds:g}s")
            await asyncio.sleep(max(0.0, args.seconds))
        return

    raise UseCaseError("UNKNOWN_COMMAND", f"Unknown command: {args.command}")


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    level = apply_preferences(settings.debug_logging or args.debug)
    log.debug("Log level %s", level_name(level))
    try:
        portal = await _open_portal(args, settings)
    except PortalError as exc:
        err = map_portal_error(exc, default_code="CONNECT_FAILED")
        print(f"error: {err.message}", file=sys.stderr)
        return EXIT_FAILED
    try:
        await _run_command(args, portal)
    except (PortalError, UseCaseError, ValueError) as exc:
        err = map_portal_error(exc, default_code="INVALID_INPUT")
        print(f"error [{err.code}]: {err.message}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        portal.close()
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_root()
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
