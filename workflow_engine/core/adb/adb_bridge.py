"""
Workflow Engine - ADB Bridge

Device Action Interface for the workflow engine. Every primitive shells out to
the adb binary (`adb -s <device> ...`) on a worker thread so the event loop is
never blocked by device I/O.
"""

import asyncio
import logging
import re
import shlex
import subprocess
from typing import List, Optional, Tuple

from workflow_engine.config import defaults
from workflow_engine.utils.error_handler import DeviceActionError
from .ui_hierarchy import UINode, parse_hierarchy

logger = logging.getLogger(__name__)

_RESOLUTION_RE = re.compile(r"(\d+)x(\d+)")


class ADBBridge:
    """
    Android Debug Bridge command runner.

    Methods raise DeviceActionError when adb exits non-zero or times out.
    The engine never interprets device output beyond that.
    """

    def __init__(self, adb_path: Optional[str] = None, timeout: Optional[int] = None):
        self.adb_path = adb_path or defaults.Defaults.ADB_PATH
        self.timeout = timeout or defaults.Defaults.ADB_COMMAND_TIMEOUT
        logger.info(f"[ADBBridge] Initialized (adb={self.adb_path}, timeout={self.timeout}s)")

    async def _run(self, device_id: str, args: List[str]) -> str:
        cmd = [self.adb_path, "-s", device_id, *args]
        logger.debug(f"[ADBBridge] Running: {' '.join(cmd)}")
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise DeviceActionError(
                f"adb command timed out after {self.timeout}s: {' '.join(args)}",
                device_id=device_id,
            ) from e
        except OSError as e:
            raise DeviceActionError(f"failed to run adb: {e}", device_id=device_id) from e

        if result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            raise DeviceActionError(
                f"adb command failed ({result.returncode}): {stderr}",
                device_id=device_id,
            )
        return result.stdout

    async def run_command(self, device_id: str, command: str) -> str:
        """
        Run a raw adb command for a device.

        Args:
            device_id: Device identifier
            command: Arguments after `adb -s <device>`, e.g. "shell settings get system x"

        Returns:
            Command stdout
        """
        args = shlex.split(command)
        if not args:
            raise DeviceActionError("empty adb command", device_id=device_id)
        return await self._run(device_id, args)

    async def shell(self, device_id: str, command: str) -> str:
        """Run a shell command on the device"""
        return await self._run(device_id, ["shell", command])

    # Device Control Methods

    async def tap(self, device_id: str, x: int, y: int) -> None:
        logger.debug(f"[ADBBridge] Tap at ({x}, {y}) on {device_id}")
        await self.shell(device_id, f"input tap {x} {y}")

    async def swipe(
        self, device_id: str, x1: int, y1: int, x2: int, y2: int, duration: int = 300
    ) -> None:
        """
        Simulate swipe gesture.

        Args:
            device_id: Device identifier
            x1, y1: Start coordinates
            x2, y2: End coordinates
            duration: Swipe duration in ms (default: 300)
        """
        logger.debug(f"[ADBBridge] Swipe ({x1},{y1}) -> ({x2},{y2}) on {device_id}")
        await self.shell(device_id, f"input swipe {x1} {y1} {x2} {y2} {duration}")

    async def long_press(self, device_id: str, x: int, y: int, duration: int = 1000) -> None:
        # A zero-length swipe held for `duration` is a long press
        await self.swipe(device_id, x, y, x, y, duration)

    async def type_text(self, device_id: str, text: str) -> None:
        """
        Type text on device.

        Args:
            device_id: Device identifier
            text: Text to type (spaces will be escaped)
        """
        escaped_text = shlex.quote(text.replace(" ", "%s"))
        logger.debug(f"[ADBBridge] Type text on {device_id}")
        await self.shell(device_id, f"input text {escaped_text}")

    async def keyevent(self, device_id: str, keycode) -> None:
        """
        Send key event to device.

        Common keycodes:
            KEYCODE_HOME (3) - Home button
            KEYCODE_BACK (4) - Back button
            KEYCODE_APP_SWITCH (187) - Recent apps
            KEYCODE_POWER (26) - Power button
            KEYCODE_VOLUME_UP (24) / KEYCODE_VOLUME_DOWN (25)
            KEYCODE_WAKEUP (224) / KEYCODE_SLEEP (223)
        """
        logger.debug(f"[ADBBridge] Key event {keycode} on {device_id}")
        await self.shell(device_id, f"input keyevent {keycode}")

    # App lifecycle

    async def launch_app(self, device_id: str, package_name: str) -> None:
        logger.info(f"[ADBBridge] Launching {package_name} on {device_id}")
        await self.shell(
            device_id,
            f"monkey -p {package_name} -c android.intent.category.LAUNCHER 1",
        )

    async def stop_app(self, device_id: str, package_name: str) -> None:
        logger.info(f"[ADBBridge] Force stopping {package_name} on {device_id}")
        await self.shell(device_id, f"am force-stop {package_name}")

    async def clear_app(self, device_id: str, package_name: str) -> None:
        logger.info(f"[ADBBridge] Clearing data for {package_name} on {device_id}")
        await self.shell(device_id, f"pm clear {package_name}")

    async def open_app_settings(self, device_id: str, package_name: str) -> None:
        await self.shell(
            device_id,
            "am start -a android.settings.APPLICATION_DETAILS_SETTINGS "
            f"-d package:{package_name}",
        )

    # UI state

    async def get_ui_hierarchy(self, device_id: str) -> UINode:
        """
        Dump and parse the current UI hierarchy.

        Returns:
            Synthetic root UINode whose children are the window nodes
        """
        # Dump to file then read it (more reliable than /dev/tty on some devices)
        output = await self.shell(
            device_id,
            "uiautomator dump /sdcard/window_dump.xml && cat /sdcard/window_dump.xml",
        )
        try:
            return parse_hierarchy(output)
        except ValueError as e:
            raise DeviceActionError(str(e), device_id=device_id) from e

    async def get_screen_resolution(self, device_id: str) -> Optional[Tuple[int, int]]:
        """Return (width, height) from `wm size`, or None if unparseable"""
        output = await self.shell(device_id, "wm size")
        # "Override size" wins when present
        matches = _RESOLUTION_RE.findall(output)
        if not matches:
            return None
        width, height = matches[-1]
        return int(width), int(height)
