"""Decoding and encoding of the MQTT payloads CampGuard exchanges.

Inbound payloads are parsed permissively: a field that is missing or has the
wrong type is treated as absent.  Only a payload that is not a JSON object at
all raises :class:`PayloadError`, which handlers catch and log.

Station (EcoFlow) messages:
    parse_quota           — ``<prefix>quota`` telemetry
    parse_set_reply       — ``<prefix>set_reply`` command result
    build_charge_command  — ``<prefix>set`` AC-in charge power command

Switch (Shelly Gen2 JSON-RPC over MQTT) messages:
    parse_switch_notifications — ``<prefix>/events/rpc`` notifications
    parse_rpc_response         — replies to our RPC requests
    parse_switch_status        — ``Switch.GetStatus`` result
    parse_current_limit        — ``Switch.GetConfig`` result
    build_rpc_request          — ``<prefix>/rpc`` requests
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Optional, Union

from .charge_limiter import MIN_STANDBY_W

Payload = Union[str, bytes, bytearray]

# Station command identifiers for "set AC-in charge power".
CHARGE_COMMAND_VERSION = "1.0"
CHARGE_COMMAND_CMD_ID = 17
CHARGE_COMMAND_CMD_FUNC = 254
CHARGE_COMMAND_DEST = 2
CHARGE_POWER_FIELD = "cfgPlugInInfoAcInChgPowMax"

KIND_TOGGLE = "toggle"
KIND_POWER_UPDATE = "power_update"
KIND_OVERCURRENT = "overcurrent"
KIND_OVERCURRENT_CLEAR = "overcurrent_clear"
KIND_CONFIG_CHANGED = "config_changed"

_KIND_ALIASES = {"power_measurement": KIND_POWER_UPDATE}


class PayloadError(ValueError):
    """Raised when an inbound payload is not a JSON object."""


@dataclass(frozen=True)
class QuotaTelemetry:
    """Station telemetry fields CampGuard consumes (``None`` when absent)."""

    ac_out_w: Optional[float] = None
    standby_w: Optional[float] = None


@dataclass(frozen=True)
class SetReply:
    """Result of a charge command as reported by the station.

    ``accepted`` is True for an acknowledgement, False for an error report
    and ``None`` when the reply carries neither.
    """

    accepted: Optional[bool]
    power_w: Optional[float] = None
    raw: Optional[dict] = None


@dataclass(frozen=True)
class SwitchNotification:
    """A single switch notification for one component."""

    component: str
    kind: str
    state: Optional[bool] = None
    power_w: Optional[float] = None


@dataclass(frozen=True)
class RpcResponse:
    """Reply to a JSON-RPC request sent to the switch."""

    request_id: int
    result: Optional[dict] = None
    error: Optional[dict] = None


@dataclass(frozen=True)
class SwitchStatus:
    """Fields of a ``Switch.GetStatus`` result CampGuard consumes."""

    voltage_v: Optional[float] = None
    output: Optional[bool] = None


def _load_object(payload: Payload) -> dict:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as err:
        raise PayloadError(f"invalid JSON: {err}") from err
    if not isinstance(data, dict):
        raise PayloadError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass but never a valid reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _boolean(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Station messages
# ---------------------------------------------------------------------------


def parse_quota(payload: Payload) -> QuotaTelemetry:
    """Parse a telemetry message into the AC-out load and standby overhead.

    The parameter map is taken from ``param``, then ``params``, then the root
    object; an empty map still counts as present.  ``powGetAcHvOut``
    (absolute value) takes precedence over ``powOutSumW`` (floored at 0);
    ``outputPower`` is floored at :data:`MIN_STANDBY_W`.  Unrecognised fields
    are ignored.

    Raises:
        PayloadError: The payload is not a JSON object.
    """
    data = _load_object(payload)
    params = _dict(data.get("param"))
    if params is None:
        params = _dict(data.get("params"))
    if params is None:
        params = data

    ac_out_w: Optional[float] = None
    hv_out = _number(params.get("powGetAcHvOut"))
    out_sum = _number(params.get("powOutSumW"))
    if hv_out is not None:
        ac_out_w = abs(hv_out)
    elif out_sum is not None:
        ac_out_w = max(0.0, out_sum)

    standby_w: Optional[float] = None
    output_power = _number(params.get("outputPower"))
    if output_power is not None:
        standby_w = max(MIN_STANDBY_W, output_power)

    return QuotaTelemetry(ac_out_w=ac_out_w, standby_w=standby_w)


def parse_set_reply(payload: Payload) -> SetReply:
    """Parse a command-result message.

    Raises:
        PayloadError: The payload is not a JSON object.
    """
    data = _load_object(payload)
    body = _dict(data.get("data"))
    if body is None:
        return SetReply(accepted=None, raw=data)
    if body.get("configOk") is True:
        return SetReply(
            accepted=True,
            power_w=_number(body.get(CHARGE_POWER_FIELD)),
            raw=data,
        )
    ack = body.get("ack")
    if not isinstance(ack, bool) and ack == 0:
        return SetReply(accepted=False, raw=data)
    return SetReply(accepted=None, raw=data)


def build_charge_command(power_w: int, request_id: int) -> str:
    """Return the JSON command that sets the station's AC-in charge power."""
    return json.dumps(
        {
            "id": request_id,
            "version": CHARGE_COMMAND_VERSION,
            "cmdId": CHARGE_COMMAND_CMD_ID,
            "dirDest": 1,
            "dirSrc": 1,
            "cmdFunc": CHARGE_COMMAND_CMD_FUNC,
            "dest": CHARGE_COMMAND_DEST,
            "needAck": 0,
            "params": {CHARGE_POWER_FIELD: int(power_w)},
        }
    )


# ---------------------------------------------------------------------------
# Switch messages
# ---------------------------------------------------------------------------


def parse_switch_notifications(
    payload: Payload, component: str
) -> list[SwitchNotification]:
    """Extract the notifications addressed to *component* from an RPC frame.

    ``NotifyEvent`` frames carry a list of events, each with a ``component``
    and an ``event`` name.  ``NotifyStatus`` frames carry a partial status of
    the component: a changed ``output`` becomes a ``toggle`` notification and
    an ``apower`` reading a ``power_update``.  Other frames, and events for
    other components, produce nothing.

    Raises:
        PayloadError: The payload is not a JSON object.
    """
    data = _load_object(payload)
    params = _dict(data.get("params"))
    if params is None:
        return []

    method = data.get("method")
    notifications: list[SwitchNotification] = []

    if method == "NotifyEvent":
        events = params.get("events")
        if not isinstance(events, list):
            return []
        for event in events:
            if not isinstance(event, dict) or event.get("component") != component:
                continue
            kind = event.get("event")
            if not isinstance(kind, str):
                continue
            notifications.append(
                SwitchNotification(
                    component=component,
                    kind=_KIND_ALIASES.get(kind, kind),
                    state=_boolean(event.get("state")),
                    power_w=_number(event.get("apower")),
                )
            )
    elif method == "NotifyStatus":
        status = _dict(params.get(component))
        if status is None:
            return []
        output = _boolean(status.get("output"))
        if output is not None:
            notifications.append(
                SwitchNotification(component=component, kind=KIND_TOGGLE, state=output)
            )
        apower = _number(status.get("apower"))
        if apower is not None:
            notifications.append(
                SwitchNotification(
                    component=component, kind=KIND_POWER_UPDATE, power_w=apower
                )
            )

    return notifications


def parse_rpc_response(payload: Payload) -> RpcResponse:
    """Parse a JSON-RPC reply.

    Raises:
        PayloadError: The payload is not a JSON object or has no integer ``id``.
    """
    data = _load_object(payload)
    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, int):
        raise PayloadError("RPC reply without an integer id")
    error = data.get("error")
    if error is not None and not isinstance(error, dict):
        error = {"message": str(error)}
    return RpcResponse(
        request_id=request_id,
        result=_dict(data.get("result")),
        error=error,
    )


def parse_switch_status(result: dict) -> SwitchStatus:
    """Read voltage and relay state from a ``Switch.GetStatus`` result.

    A non-positive voltage is treated as absent.
    """
    voltage_v = _number(result.get("voltage"))
    if voltage_v is not None and voltage_v <= 0:
        voltage_v = None
    return SwitchStatus(voltage_v=voltage_v, output=_boolean(result.get("output")))


def parse_current_limit(result: dict) -> Optional[float]:
    """Read the configured current limit (A) from a ``Switch.GetConfig`` result."""
    current_limit_a = _number(result.get("current_limit"))
    if current_limit_a is None or current_limit_a <= 0:
        return None
    return current_limit_a


def build_rpc_request(
    request_id: int, source: str, method: str, params: dict
) -> str:
    """Return a JSON-RPC request frame; the reply is published to ``<source>/rpc``."""
    return json.dumps(
        {"id": request_id, "src": source, "method": method, "params": params}
    )
