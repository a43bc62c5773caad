"""Tests for workflow_engine/core/adb/adb_bridge.py (subprocess is faked)."""

import subprocess

import pytest

from workflow_engine.core.adb import adb_bridge
from workflow_engine.core.adb.adb_bridge import ADBBridge
from workflow_engine.utils.error_handler import DeviceActionError
from tests.conftest import DEVICE, SAMPLE_XML


class FakeRun:
    """Stands in for subprocess.run; records argv lists"""

    def __init__(self, stdout="", returncode=0, stderr="", raises=None):
        self.commands = []
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.raises = raises

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if self.raises:
            raise self.raises
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(adb_bridge.subprocess, "run", fake)
    return fake


@pytest.fixture
def adb():
    return ADBBridge(adb_path="/opt/adb", timeout=5)


@pytest.mark.asyncio
class TestCommands:

    async def test_tap(self, adb, fake_run):
        await adb.tap(DEVICE, 10, 20)
        assert fake_run.commands == [["/opt/adb", "-s", DEVICE, "shell", "input tap 10 20"]]

    async def test_long_press_is_stationary_swipe(self, adb, fake_run):
        await adb.long_press(DEVICE, 5, 6, 1200)
        assert fake_run.commands[0][-1] == "input swipe 5 6 5 6 1200"

    async def test_type_text_escapes_spaces(self, adb, fake_run):
        await adb.type_text(DEVICE, "hello world")
        assert fake_run.commands[0][-1] == "input text hello%sworld"

    async def test_launch_app(self, adb, fake_run):
        await adb.launch_app(DEVICE, "com.example")
        assert "monkey -p com.example" in fake_run.commands[0][-1]

    async def test_run_command_splits_arguments(self, adb, fake_run):
        fake_run.stdout = "value\n"
        output = await adb.run_command(DEVICE, "shell settings get system 'screen brightness'")
        assert output == "value\n"
        assert fake_run.commands[0][3:] == ["shell", "settings", "get", "system", "screen brightness"]

    async def test_empty_command(self, adb, fake_run):
        with pytest.raises(DeviceActionError, match="empty"):
            await adb.run_command(DEVICE, "   ")
        assert fake_run.commands == []


@pytest.mark.asyncio
class TestFailures:

    async def test_non_zero_exit(self, adb, fake_run):
        fake_run.returncode = 1
        fake_run.stderr = "error: device offline"
        with pytest.raises(DeviceActionError, match="device offline"):
            await adb.keyevent(DEVICE, 3)

    async def test_timeout(self, adb, fake_run):
        fake_run.raises = subprocess.TimeoutExpired(cmd="adb", timeout=5)
        with pytest.raises(DeviceActionError, match="timed out"):
            await adb.shell(DEVICE, "sleep 100")

    async def test_missing_binary(self, adb, fake_run):
        fake_run.raises = FileNotFoundError("adb")
        with pytest.raises(DeviceActionError, match="failed to run adb"):
            await adb.shell(DEVICE, "true")


@pytest.mark.asyncio
class TestDeviceState:

    async def test_ui_hierarchy(self, adb, fake_run):
        fake_run.stdout = "UI hierchary dumped to: /sdcard/window_dump.xml\n" + SAMPLE_XML
        root = await adb.get_ui_hierarchy(DEVICE)
        assert root.children[0].children[0].text == "Login"

    async def test_ui_hierarchy_garbage(self, adb, fake_run):
        fake_run.stdout = "ERROR: null root node returned by UiTestAutomationBridge."
        with pytest.raises(DeviceActionError):
            await adb.get_ui_hierarchy(DEVICE)

    async def test_screen_resolution_prefers_override(self, adb, fake_run):
        fake_run.stdout = "Physical size: 1080x2400\nOverride size: 720x1600\n"
        assert await adb.get_screen_resolution(DEVICE) == (720, 1600)

    async def test_screen_resolution_unparseable(self, adb, fake_run):
        fake_run.stdout = "nothing here"
        assert await adb.get_screen_resolution(DEVICE) is None
