"""Sensor platform for CampGuard."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorEntityDescription,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import UnitOfElectricCurrent, UnitOfPower
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.typing import StateType

from .const import DOMAIN, LIMITER_STATES
from .coordinator import CampGuardCoordinator
from .entity import CampGuardEntity


@dataclass(frozen=True, kw_only=True)
class CampGuardSensorEntityDescription(SensorEntityDescription):
    """Sensor description with the coordinator value it reports."""

    value_fn: Callable[[CampGuardCoordinator], StateType]


def _power(
    key: str, value_fn: Callable[[CampGuardCoordinator], StateType]
) -> CampGuardSensorEntityDescription:
    return CampGuardSensorEntityDescription(
        key=key,
        translation_key=key,
        device_class=SensorDeviceClass.POWER,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=UnitOfPower.WATT,
        value_fn=value_fn,
    )


SENSORS: tuple[CampGuardSensorEntityDescription, ...] = (
    _power("charge_power_set", lambda c: c.state.station_charge_w),
    _power("peak_power", lambda c: c.state.peak_w),
    _power("grid_limit", lambda c: c.grid_limit_w),
    _power("other_load", lambda c: c.other_load_w),
    _power("station_ac_out", lambda c: c.state.station_ac_out_w),
    _power("station_standby", lambda c: c.state.station_standby_w),
    _power("last_ack_power", lambda c: c.last_ack_w),
    CampGuardSensorEntityDescription(
        key="current_limit",
        translation_key="current_limit",
        device_class=SensorDeviceClass.CURRENT,
        native_unit_of_measurement=UnitOfElectricCurrent.AMPERE,
        value_fn=lambda c: c.state.current_limit_a,
    ),
    CampGuardSensorEntityDescription(
        key="limiter_state",
        translation_key="limiter_state",
        device_class=SensorDeviceClass.ENUM,
        options=LIMITER_STATES,
        value_fn=lambda c: c.limiter_state,
    ),
)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up CampGuard sensor entities from a config entry."""
    coordinator: CampGuardCoordinator = hass.data[DOMAIN][entry.entry_id][
        "coordinator"
    ]
    async_add_entities(
        CampGuardSensor(coordinator, description) for description in SENSORS
    )


class CampGuardSensor(CampGuardEntity, SensorEntity):
    """A read-only view of one coordinator value."""

    entity_description: CampGuardSensorEntityDescription

    def __init__(
        self,
        coordinator: CampGuardCoordinator,
        description: CampGuardSensorEntityDescription,
    ) -> None:
        """Initialise the sensor."""
        super().__init__(coordinator, description.key)
        self.entity_description = description

    @property
    def native_value(self) -> StateType:
        """Return the coordinator value."""
        return self.entity_description.value_fn(self._coordinator)
