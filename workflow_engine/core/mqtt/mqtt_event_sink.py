"""
MQTT Event Sink for the Workflow Engine
Publishes workflow lifecycle events as JSON
Cross-platform: Uses aiomqtt on Linux, paho-mqtt on Windows

Topic: <prefix>/<sanitized device id>/workflow/<event type>
"""

import asyncio
import json
import logging
import sys
from typing import Optional

from workflow_engine.config import defaults
from workflow_engine.core.workflows.workflow_events import WorkflowEvent

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == 'win32'

if IS_WINDOWS:
    # Windows: Use synchronous paho-mqtt with async wrapper
    import paho.mqtt.client as mqtt
else:
    # Linux: Use async aiomqtt
    from aiomqtt import Client


class MQTTEventSink:
    """Event sink that forwards lifecycle events to an MQTT broker"""

    def __init__(
        self,
        broker: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic_prefix: Optional[str] = None,
    ):
        self.broker = broker or defaults.Defaults.MQTT_BROKER
        self.port = port or defaults.Defaults.MQTT_PORT
        self.username = username or defaults.Defaults.MQTT_USERNAME
        self.password = password or defaults.Defaults.MQTT_PASSWORD
        self.topic_prefix = topic_prefix or defaults.Defaults.MQTT_TOPIC_PREFIX
        self.client = None
        self._connected = False

        logger.info(
            f"[MQTTEventSink] Initialized with broker={self.broker}:{self.port} "
            f"(Platform: {'Windows' if IS_WINDOWS else 'Linux'})"
        )

    async def connect(self) -> bool:
        """Connect to MQTT broker"""
        if IS_WINDOWS:
            return await self._connect_windows()
        else:
            return await self._connect_linux()

    async def _connect_windows(self) -> bool:
        """Windows connection using paho-mqtt"""
        try:
            self.client = mqtt.Client()
            if self.username and self.password:
                self.client.username_pw_set(self.username, self.password)

            def on_connect(client, userdata, flags, rc):
                if rc == 0:
                    logger.info(f"[MQTTEventSink] Connected to {self.broker}:{self.port}")
                    self._connected = True
                else:
                    logger.error(f"[MQTTEventSink] Connection failed with code {rc}")
                    self._connected = False

            def on_disconnect(client, userdata, rc):
                logger.info(f"[MQTTEventSink] Disconnected from broker (code {rc})")
                self._connected = False

            self.client.on_connect = on_connect
            self.client.on_disconnect = on_disconnect

            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()

            # Wait for connection (up to 5 seconds)
            for _ in range(50):
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("[MQTTEventSink] Connection timeout")
            return False

        except Exception as e:
            logger.error(f"[MQTTEventSink] Unexpected error connecting: {e}")
            self._connected = False
            return False

    async def _connect_linux(self) -> bool:
        """Linux connection using aiomqtt"""
        try:
            client_kwargs = {"hostname": self.broker, "port": self.port}
            if self.username and self.password:
                client_kwargs["username"] = self.username
                client_kwargs["password"] = self.password

            self.client = Client(**client_kwargs)
            await self.client.__aenter__()
            self._connected = True
            logger.info(f"[MQTTEventSink] Connected to {self.broker}:{self.port}")
            return True

        except Exception as e:
            logger.error(f"[MQTTEventSink] Failed to connect: {e}")
            self._connected = False
            return False

    async def disconnect(self):
        """Disconnect from MQTT broker"""
        if not self.client or not self._connected:
            return

        try:
            if IS_WINDOWS:
                self.client.loop_stop()
                self.client.disconnect()
            else:
                await self.client.__aexit__(None, None, None)

            self._connected = False
            logger.info("[MQTTEventSink] Disconnected from broker")
        except Exception as e:
            logger.error(f"[MQTTEventSink] Error disconnecting: {e}")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _sanitize_device_id(self, device_id: str) -> str:
        """Sanitize device ID for MQTT topics (replace invalid characters)"""
        return (
            device_id.replace(":", "_")
            .replace(".", "_")
            .replace("/", "_")
            .replace("+", "_")
            .replace("#", "_")
        )

    def get_topic(self, event: WorkflowEvent) -> str:
        device = self._sanitize_device_id(event.device_id)
        return f"{self.topic_prefix}/{device}/workflow/{event.event_type}"

    def handle(self, event: WorkflowEvent):
        """Returns the publish coroutine; the emitter schedules it"""
        if not self._connected or not self.client:
            return None
        return self.publish_event(event)

    async def publish_event(self, event: WorkflowEvent) -> bool:
        topic = self.get_topic(event)
        payload = json.dumps(event.to_dict())
        try:
            if IS_WINDOWS:
                result = self.client.publish(topic, payload, qos=1)
                success = result.rc == mqtt.MQTT_ERR_SUCCESS
            else:
                await self.client.publish(topic, payload, qos=1)
                success = True

            if success:
                logger.debug(f"[MQTTEventSink] Published {event.event_type} to {topic}")
            else:
                logger.warning(f"[MQTTEventSink] Failed to publish {event.event_type}")
            return success

        except Exception as e:
            logger.warning(f"[MQTTEventSink] Failed to publish {event.event_type} to {topic}: {e}")
            return False
