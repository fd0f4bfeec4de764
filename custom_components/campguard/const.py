"""Constants for the CampGuard integration."""

from __future__ import annotations

DOMAIN = "campguard"
NAME = "CampGuard"

# ---------------------------------------------------------------------------
# Config entry keys
# ---------------------------------------------------------------------------

CONF_SHELLY_PREFIX = "shelly_prefix"
CONF_SWITCH_ID = "switch_id"
CONF_ECOFLOW_PREFIX = "ecoflow_prefix"
CONF_DEBUG = "debug"

CONF_INITIAL_CHARGE_W = "initial_charge_w"
CONF_MIN_CHARGE_W = "min_charge_w"
CONF_MAX_CHARGE_W = "max_charge_w"
CONF_SAFETY_BUFFER_W = "safety_buffer_w"
CONF_QUANT_W = "quant_w"
CONF_MIN_DELTA_W = "min_delta_w"
CONF_WINDOW_S = "window_s"
CONF_OPTIMIZE_INTERVAL_S = "optimize_interval_s"
CONF_RESTORE_DELAY_S = "restore_delay_s"
CONF_MQTT_TIMEOUT_S = "mqtt_timeout_s"
CONF_EVENT_TIMEOUT_S = "event_timeout_s"
CONF_QUOTA_MAX_AGE_S = "quota_max_age_s"
CONF_SET_THROTTLE_S = "set_throttle_s"

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_SWITCH_ID = 0
DEFAULT_ECOFLOW_PREFIX = "ecoflow/"
DEFAULT_DEBUG = False

DEFAULT_INITIAL_CHARGE_W = 400  # Safe charge power right after a restore
DEFAULT_MIN_CHARGE_W = 400  # Station minimum AC-in charge power
DEFAULT_MAX_CHARGE_W = 2400  # Station maximum AC-in charge power
DEFAULT_SAFETY_BUFFER_W = 100
DEFAULT_QUANT_W = 10
DEFAULT_MIN_DELTA_W = 20
DEFAULT_WINDOW_S = 10
DEFAULT_OPTIMIZE_INTERVAL_S = 10
DEFAULT_RESTORE_DELAY_S = 10
DEFAULT_MQTT_TIMEOUT_S = 30
DEFAULT_EVENT_TIMEOUT_S = 30
DEFAULT_QUOTA_MAX_AGE_S = 10
DEFAULT_SET_THROTTLE_S = 5

# Upper bounds offered by the options form
MAX_CHARGE_POWER_W = 4000
MAX_TIMING_S = 600

TICK_INTERVAL_S = 1.0

# Switch RPCs left unanswered this long are forgotten
RPC_REPLY_TIMEOUT_S = 10.0

# ---------------------------------------------------------------------------
# MQTT topics
# ---------------------------------------------------------------------------

TOPIC_QUOTA = "quota"
TOPIC_SET = "set"
TOPIC_SET_REPLY = "set_reply"

SHELLY_EVENTS_TOPIC_FMT = "{prefix}/events/rpc"
SHELLY_RPC_TOPIC_FMT = "{prefix}/rpc"
RPC_SOURCE_FMT = "campguard-{entry_id}"
RPC_REPLY_TOPIC_FMT = "{source}/rpc"

SWITCH_COMPONENT_FMT = "switch:{switch_id}"

RPC_SWITCH_GET_STATUS = "Switch.GetStatus"
RPC_SWITCH_GET_CONFIG = "Switch.GetConfig"
RPC_SWITCH_SET = "Switch.Set"

# ---------------------------------------------------------------------------
# Limiter states
# ---------------------------------------------------------------------------

STATE_OVERCURRENT = "overcurrent"
STATE_SWITCH_OFF = "switch_off"
STATE_TELEMETRY_STALE = "telemetry_stale"
STATE_ACTIVE = "active"

LIMITER_STATES = [
    STATE_OVERCURRENT,
    STATE_SWITCH_OFF,
    STATE_TELEMETRY_STALE,
    STATE_ACTIVE,
]

# ---------------------------------------------------------------------------
# Events, notifications, dispatcher, services
# ---------------------------------------------------------------------------

EVENT_OVERCURRENT = "campguard_overcurrent"
EVENT_OVERCURRENT_CLEARED = "campguard_overcurrent_cleared"
EVENT_RESTORED = "campguard_restored"

NOTIFICATION_OVERCURRENT_FMT = "campguard_overcurrent_{entry_id}"

SIGNAL_UPDATE_FMT = "campguard_update_{entry_id}"

SERVICE_SET_CHARGE_POWER = "set_charge_power"
ATTR_POWER_W = "power_w"
