"""Configuration and runtime state of the CampGuard control loop.

:class:`ControlConfig` is loaded once per config entry and never changes
while the entry is loaded.  :class:`ControlState` is the single mutable
aggregate owned by the coordinator; it is only touched from event-loop
callbacks, so it needs no locking.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .charge_limiter import DEFAULT_CURRENT_LIMIT_A, DEFAULT_VOLTAGE_V, MIN_STANDBY_W
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
)
from .peak_tracker import RollingPeakTracker

_POSITIVE_FIELDS = (
    "initial_charge_w",
    "min_charge_w",
    "max_charge_w",
    "safety_buffer_w",
    "quant_w",
    "min_delta_w",
    "window_s",
    "optimize_interval_s",
    "restore_delay_s",
    "mqtt_timeout_s",
    "event_timeout_s",
    "quota_max_age_s",
    "set_throttle_s",
)


@dataclass(frozen=True)
class ControlConfig:
    """Immutable thresholds and topic settings for one CampGuard instance."""

    shelly_prefix: str = ""
    switch_id: int = DEFAULT_SWITCH_ID
    ecoflow_prefix: str = DEFAULT_ECOFLOW_PREFIX
    initial_charge_w: int = DEFAULT_INITIAL_CHARGE_W
    min_charge_w: int = DEFAULT_MIN_CHARGE_W
    max_charge_w: int = DEFAULT_MAX_CHARGE_W
    safety_buffer_w: int = DEFAULT_SAFETY_BUFFER_W
    quant_w: int = DEFAULT_QUANT_W
    min_delta_w: int = DEFAULT_MIN_DELTA_W
    window_s: float = DEFAULT_WINDOW_S
    optimize_interval_s: float = DEFAULT_OPTIMIZE_INTERVAL_S
    restore_delay_s: float = DEFAULT_RESTORE_DELAY_S
    mqtt_timeout_s: float = DEFAULT_MQTT_TIMEOUT_S
    event_timeout_s: float = DEFAULT_EVENT_TIMEOUT_S
    quota_max_age_s: float = DEFAULT_QUOTA_MAX_AGE_S
    set_throttle_s: float = DEFAULT_SET_THROTTLE_S
    debug: bool = DEFAULT_DEBUG

    def __post_init__(self) -> None:
        for name in _POSITIVE_FIELDS:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not self.min_charge_w <= self.initial_charge_w <= self.max_charge_w:
            raise ValueError(
                "charge power limits must satisfy min <= initial <= max "
                f"(got {self.min_charge_w} / {self.initial_charge_w} / {self.max_charge_w})"
            )

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> ControlConfig:
        """Build the config from merged config-entry data and options.

        Raises:
            ValueError: A threshold is not positive or the charge limits are
                inconsistent.
        """
        return cls(
            shelly_prefix=str(cfg.get(CONF_SHELLY_PREFIX, "")).rstrip("/"),
            switch_id=int(cfg.get(CONF_SWITCH_ID, DEFAULT_SWITCH_ID)),
            ecoflow_prefix=str(cfg.get(CONF_ECOFLOW_PREFIX, DEFAULT_ECOFLOW_PREFIX)),
            initial_charge_w=int(cfg.get(CONF_INITIAL_CHARGE_W, DEFAULT_INITIAL_CHARGE_W)),
            min_charge_w=int(cfg.get(CONF_MIN_CHARGE_W, DEFAULT_MIN_CHARGE_W)),
            max_charge_w=int(cfg.get(CONF_MAX_CHARGE_W, DEFAULT_MAX_CHARGE_W)),
            safety_buffer_w=int(cfg.get(CONF_SAFETY_BUFFER_W, DEFAULT_SAFETY_BUFFER_W)),
            quant_w=int(cfg.get(CONF_QUANT_W, DEFAULT_QUANT_W)),
            min_delta_w=int(cfg.get(CONF_MIN_DELTA_W, DEFAULT_MIN_DELTA_W)),
            window_s=float(cfg.get(CONF_WINDOW_S, DEFAULT_WINDOW_S)),
            optimize_interval_s=float(
                cfg.get(CONF_OPTIMIZE_INTERVAL_S, DEFAULT_OPTIMIZE_INTERVAL_S)
            ),
            restore_delay_s=float(cfg.get(CONF_RESTORE_DELAY_S, DEFAULT_RESTORE_DELAY_S)),
            mqtt_timeout_s=float(cfg.get(CONF_MQTT_TIMEOUT_S, DEFAULT_MQTT_TIMEOUT_S)),
            event_timeout_s=float(cfg.get(CONF_EVENT_TIMEOUT_S, DEFAULT_EVENT_TIMEOUT_S)),
            quota_max_age_s=float(cfg.get(CONF_QUOTA_MAX_AGE_S, DEFAULT_QUOTA_MAX_AGE_S)),
            set_throttle_s=float(cfg.get(CONF_SET_THROTTLE_S, DEFAULT_SET_THROTTLE_S)),
            debug=bool(cfg.get(CONF_DEBUG, DEFAULT_DEBUG)),
        )


@dataclass
class ControlState:
    """Everything the control loop knows about the switch and the station.

    Timestamps are monotonic seconds.  ``None`` means "never happened".
    The ``overcurrent`` latch must only be changed through
    :meth:`latch_overcurrent` and :meth:`release_overcurrent`.
    """

    # Switch
    switch_on: bool = False
    overcurrent: bool = False
    voltage_v: float = DEFAULT_VOLTAGE_V
    current_limit_a: float = DEFAULT_CURRENT_LIMIT_A
    last_switch_event_at: float = 0.0
    overcurrent_since: Optional[float] = None

    # Rolling window of switch power readings
    peak_tracker: RollingPeakTracker = field(
        default_factory=lambda: RollingPeakTracker(DEFAULT_WINDOW_S)
    )

    # Station
    station_ac_out_w: float = 0.0
    station_standby_w: float = MIN_STANDBY_W
    station_charge_w: int = DEFAULT_INITIAL_CHARGE_W
    last_quota_at: float = 0.0

    # Pacing
    last_set_at: Optional[float] = None
    last_optimize_at: float = 0.0
    last_restore_attempt_at: Optional[float] = None
    last_telemetry_resubscribe_at: float = 0.0

    @classmethod
    def initial(cls, now: float, config: ControlConfig) -> ControlState:
        """Return the startup state.

        Liveness and optimizer timestamps start at *now* so the watchdogs do
        not fire and the optimizer does not run during the first seconds.
        """
        return cls(
            peak_tracker=RollingPeakTracker(config.window_s),
            station_charge_w=config.initial_charge_w,
            last_switch_event_at=now,
            last_quota_at=now,
            last_optimize_at=now,
            last_telemetry_resubscribe_at=now,
        )

    @property
    def peak_w(self) -> float:
        """Peak power of the rolling window as of the last prune."""
        return self.peak_tracker.peak_w

    def latch_overcurrent(self, now: float) -> None:
        """Set the latch on a trip notification; the relay is off after a trip."""
        self.overcurrent = True
        self.overcurrent_since = now
        self.switch_on = False
        self.peak_tracker.clear()

    def release_overcurrent(self) -> None:
        """Clear the latch on an explicit clear notification."""
        self.overcurrent = False
