"""Config flow for CampGuard."""

from __future__ import annotations

from typing import Any

import voluptuous as vol

from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.core import callback
from homeassistant.helpers.selector import (
    BooleanSelector,
    NumberSelector,
    NumberSelectorConfig,
    NumberSelectorMode,
    TextSelector,
)

from .const import (
    CONF_DEBUG,
    CONF_ECOFLOW_PREFIX,
    CONF_EVENT_TIMEOUT_S,
    CONF_INITIAL_CHARGE_W,
    CONF_MAX_CHARGE_W,
    CONF_MIN_CHARGE_W,
    CONF_MIN_DELTA_W,
    CONF_MQTT_TIMEOUT_S,
    CONF_OPTIMIZE_INTERVAL_S,
    CONF_QUANT_W,
    CONF_QUOTA_MAX_AGE_S,
    CONF_RESTORE_DELAY_S,
    CONF_SAFETY_BUFFER_W,
    CONF_SET_THROTTLE_S,
    CONF_SHELLY_PREFIX,
    CONF_SWITCH_ID,
    CONF_WINDOW_S,
    DEFAULT_DEBUG,
    DEFAULT_ECOFLOW_PREFIX,
    DEFAULT_EVENT_TIMEOUT_S,
    DEFAULT_INITIAL_CHARGE_W,
    DEFAULT_MAX_CHARGE_W,
    DEFAULT_MIN_CHARGE_W,
    DEFAULT_MIN_DELTA_W,
    DEFAULT_MQTT_TIMEOUT_S,
    DEFAULT_OPTIMIZE_INTERVAL_S,
    DEFAULT_QUANT_W,
    DEFAULT_QUOTA_MAX_AGE_S,
    DEFAULT_RESTORE_DELAY_S,
    DEFAULT_SAFETY_BUFFER_W,
    DEFAULT_SET_THROTTLE_S,
    DEFAULT_SWITCH_ID,
    DEFAULT_WINDOW_S,
    DOMAIN,
    MAX_CHARGE_POWER_W,
    MAX_TIMING_S,
    NAME,
)
from .state import ControlConfig

# (option key, default, maximum, unit); every threshold is a positive integer
_THRESHOLDS: tuple[tuple[str, int, int, str], ...] = (
    (CONF_INITIAL_CHARGE_W, DEFAULT_INITIAL_CHARGE_W, MAX_CHARGE_POWER_W, "W"),
    (CONF_MIN_CHARGE_W, DEFAULT_MIN_CHARGE_W, MAX_CHARGE_POWER_W, "W"),
    (CONF_MAX_CHARGE_W, DEFAULT_MAX_CHARGE_W, MAX_CHARGE_POWER_W, "W"),
    (CONF_SAFETY_BUFFER_W, DEFAULT_SAFETY_BUFFER_W, MAX_CHARGE_POWER_W, "W"),
    (CONF_QUANT_W, DEFAULT_QUANT_W, 100, "W"),
    (CONF_MIN_DELTA_W, DEFAULT_MIN_DELTA_W, 500, "W"),
    (CONF_WINDOW_S, DEFAULT_WINDOW_S, MAX_TIMING_S, "s"),
    (CONF_OPTIMIZE_INTERVAL_S, DEFAULT_OPTIMIZE_INTERVAL_S, MAX_TIMING_S, "s"),
    (CONF_RESTORE_DELAY_S, DEFAULT_RESTORE_DELAY_S, MAX_TIMING_S, "s"),
    (CONF_MQTT_TIMEOUT_S, DEFAULT_MQTT_TIMEOUT_S, MAX_TIMING_S, "s"),
    (CONF_EVENT_TIMEOUT_S, DEFAULT_EVENT_TIMEOUT_S, MAX_TIMING_S, "s"),
    (CONF_QUOTA_MAX_AGE_S, DEFAULT_QUOTA_MAX_AGE_S, MAX_TIMING_S, "s"),
    (CONF_SET_THROTTLE_S, DEFAULT_SET_THROTTLE_S, MAX_TIMING_S, "s"),
)


def _valid_topic_prefix(prefix: str) -> bool:
    """Return True for a non-empty prefix without MQTT wildcards."""
    return bool(prefix.strip()) and "+" not in prefix and "#" not in prefix


class CampGuardConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle the initial setup of CampGuard."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> CampGuardOptionsFlow:
        """Return the options flow handler."""
        return CampGuardOptionsFlow()

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Ask for the switch and station MQTT topics."""
        await self.async_set_unique_id(DOMAIN)
        self._abort_if_unique_id_configured()

        errors: dict[str, str] = {}
        if user_input is not None:
            shelly_prefix = user_input[CONF_SHELLY_PREFIX].strip().rstrip("/")
            ecoflow_prefix = user_input[CONF_ECOFLOW_PREFIX].strip()
            if not _valid_topic_prefix(shelly_prefix):
                errors[CONF_SHELLY_PREFIX] = "invalid_topic"
            if not _valid_topic_prefix(ecoflow_prefix):
                errors[CONF_ECOFLOW_PREFIX] = "invalid_topic"
            if not errors:
                return self.async_create_entry(
                    title=NAME,
                    data={
                        CONF_SHELLY_PREFIX: shelly_prefix,
                        CONF_SWITCH_ID: int(user_input[CONF_SWITCH_ID]),
                        CONF_ECOFLOW_PREFIX: ecoflow_prefix,
                    },
                )

        schema = vol.Schema(
            {
                vol.Required(CONF_SHELLY_PREFIX): TextSelector(),
                vol.Required(CONF_SWITCH_ID, default=DEFAULT_SWITCH_ID): NumberSelector(
                    NumberSelectorConfig(
                        min=0, max=3, step=1, mode=NumberSelectorMode.BOX
                    )
                ),
                vol.Required(
                    CONF_ECOFLOW_PREFIX, default=DEFAULT_ECOFLOW_PREFIX
                ): TextSelector(),
            }
        )
        return self.async_show_form(step_id="user", data_schema=schema, errors=errors)


class CampGuardOptionsFlow(OptionsFlow):
    """Tune the control thresholds; saving reloads the entry."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Show and validate the threshold form."""
        errors: dict[str, str] = {}
        current = {**self.config_entry.data, **self.config_entry.options}

        if user_input is not None:
            options: dict[str, Any] = {
                key: int(user_input[key]) for key, _, _, _ in _THRESHOLDS
            }
            options[CONF_DEBUG] = bool(user_input.get(CONF_DEBUG, DEFAULT_DEBUG))
            if not (
                options[CONF_MIN_CHARGE_W]
                <= options[CONF_INITIAL_CHARGE_W]
                <= options[CONF_MAX_CHARGE_W]
            ):
                errors["base"] = "invalid_charge_range"
            else:
                try:
                    ControlConfig.from_mapping({**self.config_entry.data, **options})
                except ValueError:
                    errors["base"] = "invalid_config"
            if not errors:
                return self.async_create_entry(title="", data=options)
            current.update(options)

        fields: dict[Any, Any] = {}
        for key, default, maximum, unit in _THRESHOLDS:
            fields[vol.Required(key, default=current.get(key, default))] = NumberSelector(
                NumberSelectorConfig(
                    min=1,
                    max=maximum,
                    step=1,
                    unit_of_measurement=unit,
                    mode=NumberSelectorMode.BOX,
                )
            )
        fields[vol.Required(CONF_DEBUG, default=current.get(CONF_DEBUG, DEFAULT_DEBUG))] = (
            BooleanSelector()
        )
        return self.async_show_form(
            step_id="init", data_schema=vol.Schema(fields), errors=errors
        )
