"""Tests for the CampGuard entity platforms.

Tests cover:
- A service device is registered and every entity is linked to it
- Unique IDs are stable and contain the config entry ID
- Sensor and binary sensor initial values
- Entities refresh when the coordinator signals an update
- Entities are unavailable after the config entry is unloaded
"""

from unittest.mock import patch

from homeassistant.const import STATE_OFF, STATE_ON, STATE_UNAVAILABLE, STATE_UNKNOWN
from homeassistant.core import HomeAssistant
from homeassistant.helpers import device_registry as dr, entity_registry as er

from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.campguard.const import (
    DOMAIN,
    STATE_OVERCURRENT,
    STATE_SWITCH_OFF,
)
from conftest import (
    DEFAULT_GRID_LIMIT_W,
    PN_CREATE,
    fire_quota,
    fire_set_reply,
    fire_switch_event,
    get_entity_id,
    setup_integration,
    switch_on,
    tick,
)

_SENSOR_KEYS = (
    "charge_power_set",
    "peak_power",
    "grid_limit",
    "other_load",
    "station_ac_out",
    "station_standby",
    "last_ack_power",
    "current_limit",
    "limiter_state",
)
_BINARY_SENSOR_KEYS = ("overcurrent", "switch_on")


class TestDeviceRegistration:
    """A single service device groups every entity."""

    async def test_device_created(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
    ) -> None:
        await setup_integration(hass, mock_config_entry)

        device = dr.async_get(hass).async_get_device(
            identifiers={(DOMAIN, mock_config_entry.entry_id)}
        )
        assert device is not None
        assert device.name == "CampGuard"
        assert device.entry_type is dr.DeviceEntryType.SERVICE

    async def test_all_entities_linked_to_device(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
    ) -> None:
        await setup_integration(hass, mock_config_entry)

        device = dr.async_get(hass).async_get_device(
            identifiers={(DOMAIN, mock_config_entry.entry_id)}
        )
        entries = er.async_entries_for_config_entry(
            er.async_get(hass), mock_config_entry.entry_id
        )
        assert len(entries) == len(_SENSOR_KEYS) + len(_BINARY_SENSOR_KEYS)
        assert all(entry.device_id == device.id for entry in entries)

    async def test_unique_ids_contain_entry_id(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
    ) -> None:
        await setup_integration(hass, mock_config_entry)

        for key in _SENSOR_KEYS:
            get_entity_id(hass, mock_config_entry, "sensor", key)
        for key in _BINARY_SENSOR_KEYS:
            get_entity_id(hass, mock_config_entry, "binary_sensor", key)


class TestInitialValues:
    """Values reported right after setup."""

    async def test_sensor_values(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
    ) -> None:
        await setup_integration(hass, mock_config_entry)

        def state_of(key: str) -> str:
            return hass.states.get(get_entity_id(hass, mock_config_entry, "sensor", key)).state

        assert state_of("charge_power_set") == "400"
        assert state_of("peak_power") == "0.0"
        assert state_of("grid_limit") == str(DEFAULT_GRID_LIMIT_W)
        assert state_of("station_standby") == "20.0"
        assert state_of("current_limit") == "6.0"
        assert state_of("other_load") == STATE_UNKNOWN
        assert state_of("last_ack_power") == STATE_UNKNOWN
        assert state_of("limiter_state") == STATE_SWITCH_OFF

    async def test_binary_sensor_values(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
    ) -> None:
        await setup_integration(hass, mock_config_entry)

        for key in _BINARY_SENSOR_KEYS:
            entity_id = get_entity_id(hass, mock_config_entry, "binary_sensor", key)
            assert hass.states.get(entity_id).state == STATE_OFF


class TestUpdates:
    """Entities follow the coordinator."""

    async def test_trip_updates_entities(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry, clock
    ) -> None:
        coordinator = await setup_integration(hass, mock_config_entry, clock)
        await switch_on(hass)
        switch_entity = get_entity_id(hass, mock_config_entry, "binary_sensor", "switch_on")
        assert hass.states.get(switch_entity).state == STATE_ON

        with patch(PN_CREATE):
            await fire_switch_event(hass, "overcurrent")
        await tick(hass, coordinator, clock)

        overcurrent = get_entity_id(hass, mock_config_entry, "binary_sensor", "overcurrent")
        limiter = get_entity_id(hass, mock_config_entry, "sensor", "limiter_state")
        assert hass.states.get(overcurrent).state == STATE_ON
        assert hass.states.get(switch_entity).state == STATE_OFF
        assert hass.states.get(limiter).state == STATE_OVERCURRENT

    async def test_telemetry_updates_sensors(
        self, hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry, clock
    ) -> None:
        await setup_integration(hass, mock_config_entry, clock)

        await fire_quota(hass, powGetAcHvOut=210, outputPower=25)
        await fire_set_reply(hass, {"configOk": True, "cfgPlugInInfoAcInChgPowMax": 600})

        def state_of(key: str) -> str:
            return hass.states.get(get_entity_id(hass, mock_config_entry, "sensor", key)).state

        assert state_of("station_ac_out") == "210.0"
        assert state_of("station_standby") == "25.0"
        assert state_of("last_ack_power") == "600.0"


async def test_entities_unavailable_after_unload(
    hass: HomeAssistant, mqtt_mock, mock_config_entry: MockConfigEntry
) -> None:
    """Unloading the entry marks every entity unavailable."""
    await setup_integration(hass, mock_config_entry)
    entity_id = get_entity_id(hass, mock_config_entry, "sensor", "limiter_state")

    await hass.config_entries.async_unload(mock_config_entry.entry_id)
    await hass.async_block_till_done()

    assert hass.states.get(entity_id).state == STATE_UNAVAILABLE
