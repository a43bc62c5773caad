"""
Recorded-script playback for "script" steps

Script file: <scripts_dir>/<name>.json
{
    "name": "login",
    "resolution": "1080x2400",
    "events": [
        {"timestamp": 0, "type": "tap", "x": 540, "y": 1200},
        {"timestamp": 800, "type": "swipe", "x": 540, "y": 1800, "x2": 540, "y2": 600, "duration": 300},
        {"timestamp": 1500, "type": "long_press", "x": 100, "y": 200, "duration": 1200},
        {"timestamp": 2000, "type": "wait", "duration": 500}
    ]
}
Coordinates are scaled from the recorded resolution to the device's.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from workflow_engine.config import defaults
from workflow_engine.utils.error_handler import DeviceActionError, ScriptNotFoundError

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def _parse_resolution(value: str) -> Optional[Tuple[int, int]]:
    parts = (value or "").lower().split("x")
    if len(parts) != 2:
        return None
    try:
        return int(parts[0].strip()), int(parts[1].strip())
    except ValueError:
        return None


class ScriptPlayer:
    """Replays recorded touch scripts against a device"""

    def __init__(self, adb_bridge, scripts_dir: Optional[str] = None):
        self.adb_bridge = adb_bridge
        self.scripts_dir = Path(scripts_dir or defaults.Defaults.SCRIPTS_DIR)

    def load_script(self, script_name: str) -> Dict[str, Any]:
        safe_name = _UNSAFE_NAME_CHARS.sub("_", script_name)
        candidates = [self.scripts_dir / f"{safe_name}.json"]
        if safe_name != script_name:
            candidates.append(self.scripts_dir / f"{script_name}.json")

        for path in candidates:
            # Reject names that escape the scripts directory
            if path.resolve().parent != self.scripts_dir.resolve():
                continue
            if path.exists():
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        return json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    raise DeviceActionError(f"failed to parse script: {e}") from e

        raise ScriptNotFoundError(script_name)

    async def _scale_factors(self, device_id: str, script: Dict[str, Any]) -> Tuple[float, float]:
        source = _parse_resolution(script.get("resolution", ""))
        if not source or source[0] <= 0 or source[1] <= 0:
            return 1.0, 1.0
        try:
            target = await self.adb_bridge.get_screen_resolution(device_id)
        except DeviceActionError as e:
            logger.warning(f"[ScriptPlayer] Could not read resolution, playing unscaled: {e}")
            return 1.0, 1.0
        if not target:
            return 1.0, 1.0
        return target[0] / source[0], target[1] / source[1]

    async def play(self, device_id: str, script_name: str, token) -> int:
        """
        Play a script by name.

        Returns:
            Number of events dispatched
        """
        script = self.load_script(script_name)
        events = script.get("events") or []
        scale_x, scale_y = await self._scale_factors(device_id, script)
        logger.info(
            f"[ScriptPlayer] Playing '{script_name}' on {device_id}: {len(events)} events "
            f"(scale {scale_x:.2f}x{scale_y:.2f})"
        )

        started = time.monotonic()
        dispatched = 0
        for event in events:
            token.raise_if_cancelled()

            elapsed_ms = int((time.monotonic() - started) * 1000)
            due_ms = int(event.get("timestamp", 0))
            if due_ms > elapsed_ms:
                await token.sleep(due_ms - elapsed_ms)

            event_type = event.get("type")
            x = int(event.get("x", 0) * scale_x)
            y = int(event.get("y", 0) * scale_y)
            duration = int(event.get("duration", 0))

            try:
                if event_type == "tap":
                    await self.adb_bridge.tap(device_id, x, y)
                elif event_type == "long_press":
                    hold = duration if duration >= 500 else 1000
                    await self.adb_bridge.long_press(device_id, x, y, hold)
                elif event_type == "swipe":
                    x2 = int(event.get("x2", 0) * scale_x)
                    y2 = int(event.get("y2", 0) * scale_y)
                    await self.adb_bridge.swipe(device_id, x, y, x2, y2, duration)
                elif event_type == "wait":
                    await token.sleep(duration)
                    continue
                else:
                    logger.debug(f"  Skipping unsupported script event: {event_type}")
                    continue
            except DeviceActionError as e:
                # A single dropped touch does not abort playback
                logger.warning(f"[ScriptPlayer] Event {event_type} failed: {e}")
                continue
            dispatched += 1

        return dispatched
