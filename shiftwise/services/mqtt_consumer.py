"""
MQTT consumer that feeds domain events into the workflow engine.

Publishers send JSON to ``<prefix>/<source>/events``::

    {"event_type": "job_created", "payload": {...}, "organization_id": "org-1"}
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Optional

import paho.mqtt.client as mqtt

from ..core.config import Settings, settings as default_settings
from ..core.errors import log_exception
from ..schemas.rule import EVENT_TRIGGER_TYPES
from .rule_engine import WorkflowEngine

EVENT_TYPES = {t.value for t in EVENT_TRIGGER_TYPES}


def parse_event_message(raw: bytes) -> tuple[str, dict, Optional[str]]:
    """Decode one MQTT message into ``(event_type, payload, organization_id)``.

    Raises ``ValueError`` for anything the engine should not see.
    """
    try:
        message = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ValueError("message must be a JSON object")
    event_type = message.get("event_type")
    if event_type not in EVENT_TYPES:
        raise ValueError(f"unsupported event_type {event_type!r}")
    payload = message.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValueError("payload must be a JSON object")
    organization_id = message.get("organization_id")
    if organization_id is not None:
        organization_id = str(organization_id)
    return event_type, payload, organization_id


class MQTTConsumer:
    """MQTT subscriber that dispatches events to a ``WorkflowEngine``."""

    def __init__(self, engine: WorkflowEngine, settings: Settings | None = None) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.engine = engine
        self.settings = settings or default_settings
        self.topic = f"{self.settings.mqtt_topic_prefix.strip('/')}/+/events"
        protocol = os.getenv("MQTT_PROTOCOL", "v311").lower()
        if protocol == "v31":
            mqtt_protocol = mqtt.MQTTv31
        elif protocol == "v5":
            mqtt_protocol = mqtt.MQTTv5
        else:
            mqtt_protocol = mqtt.MQTTv311
        client_id = f"shiftwise-backend-{id(self)}"
        self.logger.info("MQTT client_id=%s protocol=%s", client_id, protocol)
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt_protocol,
        )
        if self.settings.mqtt_username:
            self.client.username_pw_set(self.settings.mqtt_username, self.settings.mqtt_password)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect
        self.client.reconnect_delay_set(min_delay=1, max_delay=10)
        self._connected = threading.Event()

    def on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code.is_failure:
            self.logger.error(
                "Failed to connect to MQTT broker %s:%s reason=%s",
                self.settings.mqtt_broker_host,
                self.settings.mqtt_broker_port,
                reason_code,
            )
            return
        self.logger.info(
            "Connected to MQTT broker %s:%s topic=%s",
            self.settings.mqtt_broker_host,
            self.settings.mqtt_broker_port,
            self.topic,
        )
        client.subscribe(self.topic, qos=1)
        self._connected.set()

    def on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        self._connected.clear()
        self.logger.warning("MQTT disconnected reason=%s", reason_code)

    def on_message(self, client: mqtt.Client, userdata: Any, msg: Any) -> None:
        try:
            event_type, payload, organization_id = parse_event_message(msg.payload)
        except ValueError as exc:
            self.logger.warning(
                "Invalid workflow event topic=%s payload_len=%s err=%s",
                getattr(msg, "topic", None),
                len(msg.payload) if getattr(msg, "payload", None) is not None else None,
                exc,
            )
            return
        try:
            records = self.engine.trigger_event(event_type, payload, organization_id=organization_id)
        except Exception as exc:
            log_exception(self.logger, "Workflow event dispatch failed", extra={"event_type": event_type}, exc=exc)
            return
        self.logger.info("Workflow event %s from %s ran rules=%s", event_type, msg.topic, len(records))

    def start(self) -> None:
        try:
            self.client.connect_async(
                self.settings.mqtt_broker_host,
                self.settings.mqtt_broker_port,
                keepalive=60,
            )
            self.client.loop_start()
        except Exception as exc:
            self.logger.error(
                "MQTT connection failed for %s:%s (%s)",
                self.settings.mqtt_broker_host,
                self.settings.mqtt_broker_port,
                exc,
            )

    def stop(self) -> None:
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as exc:
            log_exception(self.logger, "MQTT shutdown failed", exc=exc)

    def is_connected(self) -> bool:
        return self._connected.is_set()
