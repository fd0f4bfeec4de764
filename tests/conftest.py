"""pytest configuration and shared fixtures for the CampGuard test suite.

Coordinator tests drive the control loop by hand: the coordinator is
created with a :class:`FakeClock` as its monotonic clock and tests call
:func:`tick` instead of waiting for the real 1 Hz timer.  MQTT traffic is
injected with ``async_fire_mqtt_message`` and outbound messages are read
back from the ``mqtt_mock`` fixture.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any
from unittest.mock import patch

import pytest
from homeassistant.config_entries import ConfigEntryState
from homeassistant.core import HomeAssistant
from homeassistant.helpers import entity_registry as er

from pytest_homeassistant_custom_component.common import (
    MockConfigEntry,
    async_fire_mqtt_message,
)

from custom_components.campguard.const import (
    CONF_ECOFLOW_PREFIX,
    CONF_SHELLY_PREFIX,
    CONF_SWITCH_ID,
    DOMAIN,
    NAME,
)

sys.path.insert(0, os.path.dirname(__file__))

# Patch paths for persistent-notification helpers
PN_CREATE = "custom_components.campguard.coordinator.pn_async_create"
PN_DISMISS = "custom_components.campguard.coordinator.pn_async_dismiss"

# -----------------------------------------------------------------------
# Shared constants
# -----------------------------------------------------------------------

SHELLY_PREFIX = "shellyplus1pm-test"
EVENTS_TOPIC = f"{SHELLY_PREFIX}/events/rpc"
RPC_TOPIC = f"{SHELLY_PREFIX}/rpc"
QUOTA_TOPIC = "ecoflow/quota"
SET_TOPIC = "ecoflow/set"
SET_REPLY_TOPIC = "ecoflow/set_reply"
COMPONENT = "switch:0"

START_TIME = 1000.0

# 6 A default current limit at 230 V
DEFAULT_GRID_LIMIT_W = 1380

BASE_DATA = {
    CONF_SHELLY_PREFIX: SHELLY_PREFIX,
    CONF_SWITCH_ID: 0,
    CONF_ECOFLOW_PREFIX: "ecoflow/",
}


class FakeClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


# -----------------------------------------------------------------------
# Shared fixtures
# -----------------------------------------------------------------------


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations):
    """Enable custom integrations in all tests."""
    yield


@pytest.fixture
def clock() -> FakeClock:
    """A fresh fake clock at START_TIME."""
    return FakeClock()


@pytest.fixture
def mock_config_entry() -> MockConfigEntry:
    """Create a config entry with default thresholds."""
    return MockConfigEntry(
        domain=DOMAIN,
        data={**BASE_DATA},
        title=NAME,
        unique_id=DOMAIN,
    )


def make_entry(**options: Any) -> MockConfigEntry:
    """Create a config entry with the given threshold options."""
    return MockConfigEntry(
        domain=DOMAIN,
        data={**BASE_DATA},
        options=options,
        title=NAME,
        unique_id=DOMAIN,
    )


# -----------------------------------------------------------------------
# Setup and clock helpers
# -----------------------------------------------------------------------


async def setup_integration(
    hass: HomeAssistant, entry: MockConfigEntry, clock: FakeClock | None = None
):
    """Load *entry* and return its coordinator.

    With *clock*, the coordinator reads time from it instead of
    ``time.monotonic``.
    """
    entry.add_to_hass(hass)
    if clock is None:
        await hass.config_entries.async_setup(entry.entry_id)
    else:
        with patch("custom_components.campguard.coordinator.time") as mock_time:
            mock_time.monotonic = clock
            await hass.config_entries.async_setup(entry.entry_id)
    await hass.async_block_till_done()
    assert entry.state is ConfigEntryState.LOADED
    return hass.data[DOMAIN][entry.entry_id]["coordinator"]


async def tick(hass: HomeAssistant, coordinator, clock: FakeClock, seconds: float = 1.0) -> None:
    """Advance the clock and run one control cycle."""
    clock.advance(seconds)
    coordinator._handle_tick()
    await hass.async_block_till_done()


async def tick_until(
    hass: HomeAssistant, coordinator, clock: FakeClock, until: float
) -> None:
    """Run one control cycle per second until the clock reaches *until*."""
    while clock.now < until:
        await tick(hass, coordinator, clock)


def get_entity_id(
    hass: HomeAssistant, entry: MockConfigEntry, platform: str, suffix: str
) -> str:
    """Look up entity_id from the entity registry."""
    ent_reg = er.async_get(hass)
    entity_id = ent_reg.async_get_entity_id(
        platform, DOMAIN, f"{entry.entry_id}_{suffix}"
    )
    assert entity_id is not None
    return entity_id


def collect_events(hass: HomeAssistant, event_type: str) -> list[dict]:
    """Subscribe to an HA event type and return a list of captured event data dicts.

    The returned list is populated in-place as events fire.
    """
    captured: list[dict] = []

    def _listener(event):
        captured.append(dict(event.data))

    hass.bus.async_listen(event_type, _listener)
    return captured


# -----------------------------------------------------------------------
# Inbound MQTT helpers
# -----------------------------------------------------------------------


async def fire_switch_event(
    hass: HomeAssistant, event: str, component: str = COMPONENT, **fields: Any
) -> None:
    """Publish a NotifyEvent frame with one event for *component*."""
    payload = {
        "src": SHELLY_PREFIX,
        "dst": f"{SHELLY_PREFIX}/events",
        "method": "NotifyEvent",
        "params": {
            "ts": 1700000000.0,
            "events": [{"component": component, "id": 0, "event": event, **fields}],
        },
    }
    async_fire_mqtt_message(hass, EVENTS_TOPIC, json.dumps(payload))
    await hass.async_block_till_done()


async def fire_switch_status(
    hass: HomeAssistant, component: str = COMPONENT, **status: Any
) -> None:
    """Publish a NotifyStatus frame with a partial status of *component*."""
    payload = {
        "src": SHELLY_PREFIX,
        "dst": f"{SHELLY_PREFIX}/events",
        "method": "NotifyStatus",
        "params": {"ts": 1700000000.0, component: {"id": 0, **status}},
    }
    async_fire_mqtt_message(hass, EVENTS_TOPIC, json.dumps(payload))
    await hass.async_block_till_done()


async def switch_on(hass: HomeAssistant) -> None:
    """Report the relay as on."""
    await fire_switch_status(hass, output=True)


async def fire_power(hass: HomeAssistant, power_w: float) -> None:
    """Report an instantaneous power reading from the switch meter."""
    await fire_switch_status(hass, apower=power_w)


async def fire_quota(hass: HomeAssistant, payload: Any = None, **params: Any) -> None:
    """Publish station telemetry; a raw *payload* string is sent verbatim."""
    if payload is None:
        payload = json.dumps({"params": params})
    async_fire_mqtt_message(hass, QUOTA_TOPIC, payload)
    await hass.async_block_till_done()


async def fire_set_reply(hass: HomeAssistant, data: dict) -> None:
    """Publish a command result from the station."""
    async_fire_mqtt_message(hass, SET_REPLY_TOPIC, json.dumps({"id": 1, "data": data}))
    await hass.async_block_till_done()


async def reply_rpc(
    hass: HomeAssistant,
    entry: MockConfigEntry,
    request_id: int,
    result: dict | None = None,
    error: dict | None = None,
) -> None:
    """Answer an RPC request on the coordinator's reply topic."""
    payload: dict[str, Any] = {"id": request_id, "src": SHELLY_PREFIX}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result or {}
    async_fire_mqtt_message(hass, f"campguard-{entry.entry_id}/rpc", json.dumps(payload))
    await hass.async_block_till_done()


# -----------------------------------------------------------------------
# Outbound MQTT helpers
# -----------------------------------------------------------------------


def published(mqtt_mock, topic: str) -> list[dict]:
    """Return the decoded payloads published to *topic*, oldest first."""
    return [
        json.loads(call.args[1])
        for call in mqtt_mock.async_publish.call_args_list
        if call.args[0] == topic
    ]


def rpc_requests(mqtt_mock, method: str | None = None) -> list[dict]:
    """Return the RPC requests sent to the switch, optionally for one method."""
    return [
        request
        for request in published(mqtt_mock, RPC_TOPIC)
        if method is None or request["method"] == method
    ]


def last_rpc_id(mqtt_mock, method: str) -> int:
    """Return the request id of the most recent *method* request."""
    requests = rpc_requests(mqtt_mock, method)
    assert requests, f"no {method} request was sent"
    return requests[-1]["id"]


def charge_commands(mqtt_mock) -> list[int]:
    """Return the charge powers commanded so far, oldest first."""
    return [
        command["params"]["cfgPlugInInfoAcInChgPowMax"]
        for command in published(mqtt_mock, SET_TOPIC)
    ]
