"""
Element Actions - selector-driven device operations

Each operation polls the UI hierarchy until its selector resolves (or, for
wait_gone, stops resolving) within a timeout, then acts on the element's
bounds center through the ADB bridge.
"""

import logging
import time
from typing import Optional

from workflow_engine.config import defaults
from workflow_engine.utils.error_handler import DeviceActionError, ElementNotFoundError
from .ui_hierarchy import UINode, find_element

logger = logging.getLogger(__name__)


class ElementActions:
    """Selector-based click / long-click / input / swipe / wait operations"""

    def __init__(self, adb_bridge, poll_interval_ms: Optional[int] = None):
        self.adb_bridge = adb_bridge
        self.poll_interval_ms = poll_interval_ms or defaults.Defaults.ELEMENT_POLL_INTERVAL_MS

    async def find_now(self, device_id: str, selector) -> Optional[UINode]:
        """Single lookup against a freshly fetched hierarchy"""
        root = await self.adb_bridge.get_ui_hierarchy(device_id)
        return find_element(root, selector.type, selector.value, selector.index)

    async def wait_for_element(
        self, device_id: str, selector, timeout_ms: int, token
    ) -> UINode:
        """
        Poll until the selector resolves.

        Raises:
            ElementNotFoundError: If the element does not appear within timeout_ms
            RunCancelledError: If the run is cancelled while polling
        """
        if selector.type == "bounds":
            return UINode(bounds=selector.value)

        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            token.raise_if_cancelled()
            try:
                node = await self.find_now(device_id, selector)
                if node is not None:
                    return node
            except DeviceActionError as e:
                logger.debug(f"  UI dump failed while waiting for element: {e}")

            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                raise ElementNotFoundError(
                    f"element not found within timeout {timeout_ms}ms "
                    f"(selector: {selector.type}={selector.value})",
                    device_id=device_id,
                )
            await token.sleep(min(self.poll_interval_ms, remaining_ms))

    async def wait_element_gone(
        self, device_id: str, selector, timeout_ms: int, token
    ) -> None:
        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            token.raise_if_cancelled()
            try:
                if await self.find_now(device_id, selector) is None:
                    return
            except DeviceActionError as e:
                logger.debug(f"  UI dump failed while waiting for element to go: {e}")

            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                raise DeviceActionError(
                    "timeout waiting for element to disappear "
                    f"(selector: {selector.type}={selector.value})",
                    device_id=device_id,
                )
            await token.sleep(min(self.poll_interval_ms, remaining_ms))

    def _center(self, device_id: str, node: UINode):
        center = node.center()
        if center is None:
            raise DeviceActionError(f"invalid bounds: {node.bounds}", device_id=device_id)
        return center

    async def click(self, device_id: str, selector, timeout_ms: int, token) -> None:
        node = await self.wait_for_element(device_id, selector, timeout_ms, token)
        x, y = self._center(device_id, node)
        await self.adb_bridge.tap(device_id, x, y)

    async def long_click(
        self, device_id: str, selector, timeout_ms: int, token, duration_ms: Optional[int] = None
    ) -> None:
        node = await self.wait_for_element(device_id, selector, timeout_ms, token)
        x, y = self._center(device_id, node)
        duration = duration_ms or defaults.Defaults.LONG_CLICK_DURATION_MS
        await self.adb_bridge.long_press(device_id, x, y, duration)

    async def input_text(
        self, device_id: str, selector, text: str, timeout_ms: int, token
    ) -> None:
        """Tap the element to focus it, then type"""
        node = await self.wait_for_element(device_id, selector, timeout_ms, token)
        x, y = self._center(device_id, node)
        await self.adb_bridge.tap(device_id, x, y)
        await token.sleep(defaults.Defaults.INPUT_FOCUS_DELAY_MS)
        await self.adb_bridge.type_text(device_id, text)

    async def swipe(
        self,
        device_id: str,
        selector,
        direction: str,
        distance: int,
        duration: int,
        timeout_ms: int,
        token,
    ) -> None:
        """Swipe from the element center in a direction"""
        node = await self.wait_for_element(device_id, selector, timeout_ms, token)
        x, y = self._center(device_id, node)
        x2, y2 = offset_point(x, y, direction, distance)
        await self.adb_bridge.swipe(device_id, x, y, x2, y2, duration)


def offset_point(x: int, y: int, direction: str, distance: int):
    """Move (x, y) by distance in an up/down/left/right direction"""
    direction = (direction or "").lower()
    if direction == "up":
        return x, y - distance
    if direction == "down":
        return x, y + distance
    if direction == "left":
        return x - distance, y
    if direction == "right":
        return x + distance, y
    raise ValueError(f"invalid swipe direction: {direction}")
