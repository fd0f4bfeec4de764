"""Pure computation functions for power-station AC-in charge limiting.

This module contains the core decision arithmetic used by the integration
runtime.  It has no dependency on Home Assistant — it can be tested
with plain pytest.

Functions:
    quantize_power           — round a power value half-up to the nearest step
    clamp_charge_power       — quantise and clamp a raw target to station limits
    compute_grid_limit_w     — grid limit in Watts from current limit and voltage
    estimate_other_load_w    — non-charger load on the circuit (peak or telemetry)
    compute_charge_target    — headroom-based charge target
    needs_adjustment         — hysteresis check before sending a new target
    compute_restore_draw     — expected grid draw right after a restore
    has_restore_headroom     — whether a restore fits under the grid limit
    is_stale                 — generic "older than timeout" check
    resolve_limiter_state    — operational state string for the state sensor
"""

from __future__ import annotations

import math
from typing import Optional

DEFAULT_VOLTAGE_V: float = 230.0  # Volts — assumed until the switch reports
DEFAULT_CURRENT_LIMIT_A: float = 6.0  # Amps — assumed until the switch reports
MIN_STANDBY_W: float = 20.0  # Watts — station inverter idle overhead floor

# A peak-derived "other load" above this is treated as a garbage reading.
PLAUSIBLE_OTHER_LOAD_MAX_W: float = 2000.0
# Minimum spacing between restore attempts while the latch is set.
RESTORE_ATTEMPT_INTERVAL_S: float = 3.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def quantize_power(power_w: float, step_w: float) -> int:
    """Round *power_w* to the nearest multiple of *step_w* (halves round up).

    Args:
        power_w:  Power value in Watts.
        step_w:   Quantisation step in Watts.

    Returns:
        The quantised power in whole Watts.
    """
    return _round_half_up(power_w / step_w) * int(step_w)


def clamp_charge_power(
    target_w: float,
    min_charge_w: float,
    max_charge_w: float,
    step_w: float,
) -> int:
    """Quantise *target_w* and clamp it to the station's charge power range.

    The bounds are themselves snapped onto the step grid (minimum rounded up,
    maximum rounded down) so the result is always a multiple of *step_w* and
    inside ``[min_charge_w, max_charge_w]``, whatever the raw input.

    Args:
        target_w:      Raw target charge power in Watts (may be negative or huge).
        min_charge_w:  Station minimum AC-in charge power.
        max_charge_w:  Station maximum AC-in charge power.
        step_w:        Quantisation step in Watts.

    Returns:
        The charge power to command, in whole Watts.
    """
    step = int(step_w)
    low = int(math.ceil(min_charge_w / step)) * step
    high = int(math.floor(max_charge_w / step)) * step
    quantized = quantize_power(target_w, step)
    if quantized < low:
        return low
    if quantized > high:
        return high
    return quantized


def compute_grid_limit_w(current_limit_a: float, voltage_v: float) -> int:
    """Return the grid limit in Watts: ``floor(current_limit_a × voltage_v)``."""
    return int(math.floor(current_limit_a * voltage_v))


def estimate_other_load_w(
    peak_w: float,
    switch_on: bool,
    station_charge_w: float,
    station_ac_out_w: float,
    station_standby_w: float,
) -> int:
    """Estimate the load on the circuit that is not the station's own charging.

    When the switch is on and the rolling window holds a positive peak, the
    estimate is the peak minus the last commanded charge power.  A negative
    result or one above :data:`PLAUSIBLE_OTHER_LOAD_MAX_W` means the meter
    reading does not belong to the current charge level (e.g. right after a
    restore, before the switch has reported), so the telemetry-only estimate
    ``station_ac_out_w + station_standby_w`` is used instead.

    Args:
        peak_w:             Rolling-window peak power measured by the switch.
        switch_on:          Last known relay state.
        station_charge_w:   Last commanded charge power.
        station_ac_out_w:   Consumer load reported by the station.
        station_standby_w:  Inverter/standby overhead reported by the station.

    Returns:
        The other-load estimate in whole Watts, never negative.
    """
    telemetry_w = station_ac_out_w + station_standby_w
    if peak_w > 0 and switch_on:
        other_w = peak_w - station_charge_w
        if other_w < 0 or other_w > PLAUSIBLE_OTHER_LOAD_MAX_W:
            other_w = telemetry_w
    else:
        other_w = telemetry_w
    return max(0, _round_half_up(other_w))


def compute_charge_target(
    limit_w: float,
    other_w: float,
    safety_buffer_w: float,
    min_charge_w: float,
    max_charge_w: float,
    step_w: float,
) -> int:
    """Compute the charge target that keeps the circuit under its limit.

    ``target = clamp(quantize(limit_w − other_w − safety_buffer_w))``

    Args:
        limit_w:          Grid limit in Watts.
        other_w:          Non-charger load estimate in Watts.
        safety_buffer_w:  Headroom kept below the limit.
        min_charge_w:     Station minimum charge power.
        max_charge_w:     Station maximum charge power.
        step_w:           Quantisation step in Watts.

    Returns:
        The clamped, quantised target in whole Watts.
    """
    return clamp_charge_power(
        limit_w - other_w - safety_buffer_w, min_charge_w, max_charge_w, step_w
    )


def needs_adjustment(target_w: float, current_w: float, min_delta_w: float) -> bool:
    """Return True when the change from *current_w* is large enough to send."""
    return abs(target_w - current_w) >= min_delta_w


def compute_restore_draw(
    initial_charge_w: float,
    station_ac_out_w: float,
    station_standby_w: float,
) -> float:
    """Return the grid draw expected right after a restore, from telemetry only."""
    return initial_charge_w + station_ac_out_w + station_standby_w


def has_restore_headroom(expected_draw_w: float, limit_w: float) -> bool:
    """Return True when *expected_draw_w* stays strictly below *limit_w*."""
    return expected_draw_w < limit_w


def is_stale(now: float, last_seen: Optional[float], timeout_s: float) -> bool:
    """Return True when more than *timeout_s* has passed since *last_seen*.

    ``None`` means "never seen" and is always stale.
    """
    if last_seen is None:
        return True
    return now - last_seen > timeout_s


def resolve_limiter_state(
    overcurrent: bool,
    switch_on: bool,
    telemetry_stale: bool,
) -> str:
    """Return the limiter operational state string.

    - ``"overcurrent"``     — the latch is set (restore logic in charge)
    - ``"switch_off"``      — relay is off, nothing to optimise
    - ``"telemetry_stale"`` — switch is on but station telemetry is too old
    - ``"active"``          — optimiser is controlling the charge power

    These string values correspond to the ``STATE_*`` constants in ``const.py``.
    """
    if overcurrent:
        return "overcurrent"
    if not switch_on:
        return "switch_off"
    if telemetry_stale:
        return "telemetry_stale"
    return "active"
