"""Binary sensor platform for CampGuard."""

from __future__ import annotations

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN
from .coordinator import CampGuardCoordinator
from .entity import CampGuardEntity


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up CampGuard binary sensor entities from a config entry."""
    coordinator: CampGuardCoordinator = hass.data[DOMAIN][entry.entry_id][
        "coordinator"
    ]
    async_add_entities(
        [
            CampGuardOvercurrentBinarySensor(coordinator),
            CampGuardSwitchOnBinarySensor(coordinator),
        ]
    )


class CampGuardOvercurrentBinarySensor(CampGuardEntity, BinarySensorEntity):
    """On while the overcurrent latch is set.

    Stays on after a successful restore until the switch reports that the
    overcurrent condition has cleared.
    """

    _attr_device_class = BinarySensorDeviceClass.PROBLEM

    def __init__(self, coordinator: CampGuardCoordinator) -> None:
        """Initialise the binary sensor."""
        super().__init__(coordinator, "overcurrent")

    @property
    def is_on(self) -> bool:
        """Return True while overcurrent is latched."""
        return self._coordinator.state.overcurrent


class CampGuardSwitchOnBinarySensor(CampGuardEntity, BinarySensorEntity):
    """Last known relay state of the current-limited switch."""

    _attr_device_class = BinarySensorDeviceClass.POWER

    def __init__(self, coordinator: CampGuardCoordinator) -> None:
        """Initialise the binary sensor."""
        super().__init__(coordinator, "switch_on")

    @property
    def is_on(self) -> bool:
        """Return True when the relay is on."""
        return self._coordinator.state.switch_on
