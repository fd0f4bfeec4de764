"""Base entity for CampGuard."""

from __future__ import annotations

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import callback
from homeassistant.helpers.device_registry import DeviceEntryType, DeviceInfo
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity import Entity

from .const import DOMAIN, NAME
from .coordinator import CampGuardCoordinator


def get_device_info(entry: ConfigEntry) -> DeviceInfo:
    """Return the device every CampGuard entity belongs to."""
    return DeviceInfo(
        identifiers={(DOMAIN, entry.entry_id)},
        name=NAME,
        manufacturer=DOMAIN,
        model="AC-in charge limiter",
        entry_type=DeviceEntryType.SERVICE,
    )


class CampGuardEntity(Entity):
    """Entity that refreshes whenever the coordinator signals an update."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(self, coordinator: CampGuardCoordinator, key: str) -> None:
        """Initialise the entity for the given coordinator value."""
        self._coordinator = coordinator
        self._attr_unique_id = f"{coordinator.entry.entry_id}_{key}"
        self._attr_translation_key = key
        self._attr_device_info = get_device_info(coordinator.entry)

    async def async_added_to_hass(self) -> None:
        """Subscribe to coordinator updates."""
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass,
                self._coordinator.signal_update,
                self._handle_coordinator_update,
            )
        )

    @callback
    def _handle_coordinator_update(self) -> None:
        self.async_write_ha_state()
