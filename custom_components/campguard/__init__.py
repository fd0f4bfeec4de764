"""CampGuard: keep a power station's AC-in draw under a campsite breaker limit.

Sets up the control coordinator for a config entry, forwards the entity
platforms and registers the ``campguard.set_charge_power`` service.
"""

from __future__ import annotations

import voluptuous as vol

from homeassistant.components import mqtt
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import (
    ConfigEntryError,
    ConfigEntryNotReady,
    ServiceValidationError,
)

from .const import ATTR_POWER_W, DOMAIN, SERVICE_SET_CHARGE_POWER
from .coordinator import CampGuardCoordinator
from .state import ControlConfig
from ._log import get_logger

_LOGGER = get_logger(__name__)

PLATFORMS: list[Platform] = [Platform.SENSOR, Platform.BINARY_SENSOR]

SET_CHARGE_POWER_SCHEMA = vol.Schema(
    {vol.Required(ATTR_POWER_W): vol.All(vol.Coerce(float), vol.Range(min=0))}
)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up CampGuard from a config entry."""
    if not await mqtt.async_wait_for_mqtt_client(hass):
        raise ConfigEntryNotReady("MQTT is not available")

    try:
        config = ControlConfig.from_mapping({**entry.data, **entry.options})
    except ValueError as err:
        raise ConfigEntryError(f"Invalid CampGuard configuration: {err}") from err

    coordinator = CampGuardCoordinator(hass, entry, config)
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = {"coordinator": coordinator}

    await coordinator.async_start()
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    _register_services(hass)
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry and tear down every subscription."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        data = hass.data[DOMAIN].pop(entry.entry_id)
        data["coordinator"].async_stop()
    return unload_ok


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the entry so changed options are loaded afresh."""
    await hass.config_entries.async_reload(entry.entry_id)


def _register_services(hass: HomeAssistant) -> None:
    """Register the integration services once."""
    if hass.services.has_service(DOMAIN, SERVICE_SET_CHARGE_POWER):
        return

    async def _handle_set_charge_power(call: ServiceCall) -> None:
        power_w: float = call.data[ATTR_POWER_W]
        for data in hass.data.get(DOMAIN, {}).values():
            coordinator: CampGuardCoordinator = data["coordinator"]
            if coordinator.state.overcurrent:
                raise ServiceValidationError(
                    "Charge power cannot be changed while overcurrent is latched"
                )
            if not coordinator.manual_set_charge_power(power_w):
                raise ServiceValidationError(
                    "A charge power command was sent moments ago; try again shortly"
                )

    hass.services.async_register(
        DOMAIN,
        SERVICE_SET_CHARGE_POWER,
        _handle_set_charge_power,
        schema=SET_CHARGE_POWER_SCHEMA,
    )
    _LOGGER.debug("Registered service %s.%s", DOMAIN, SERVICE_SET_CHARGE_POWER)
