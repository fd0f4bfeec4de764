"""Control coordinator for CampGuard.

Subscribes to the switch's JSON-RPC notifications and the power station's
telemetry over MQTT and drives the control loop from a single 1 Hz tick.
Each tick runs, in this order: the liveness watchdogs, rolling-window
maintenance, then either the restore logic (while the overcurrent latch is
set) or the headroom optimizer (while the switch is on).  Entity state is
published via the HA dispatcher so sensor platforms refresh without tight
coupling.

Everything here runs on the Home Assistant event loop: every handler is a
``@callback`` that runs to completion, and outbound publishes and
re-subscriptions are scheduled as tasks rather than awaited.
"""

from __future__ import annotations

import itertools
import random
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from homeassistant.components import mqtt
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.dispatcher import async_dispatcher_send
from homeassistant.helpers.event import async_track_time_interval

from homeassistant.components.persistent_notification import (
    async_create as pn_async_create,
    async_dismiss as pn_async_dismiss,
)

from .charge_limiter import (
    RESTORE_ATTEMPT_INTERVAL_S,
    clamp_charge_power,
    compute_charge_target,
    compute_grid_limit_w,
    compute_restore_draw,
    estimate_other_load_w,
    has_restore_headroom,
    is_stale,
    needs_adjustment,
    resolve_limiter_state,
)
from .const import (
    EVENT_OVERCURRENT,
    EVENT_OVERCURRENT_CLEARED,
    EVENT_RESTORED,
    NOTIFICATION_OVERCURRENT_FMT,
    RPC_REPLY_TIMEOUT_S,
    RPC_REPLY_TOPIC_FMT,
    RPC_SOURCE_FMT,
    RPC_SWITCH_GET_CONFIG,
    RPC_SWITCH_GET_STATUS,
    RPC_SWITCH_SET,
    SHELLY_EVENTS_TOPIC_FMT,
    SHELLY_RPC_TOPIC_FMT,
    SIGNAL_UPDATE_FMT,
    SWITCH_COMPONENT_FMT,
    TICK_INTERVAL_S,
    TOPIC_QUOTA,
    TOPIC_SET,
    TOPIC_SET_REPLY,
)
from .messages import (
    KIND_CONFIG_CHANGED,
    KIND_OVERCURRENT,
    KIND_OVERCURRENT_CLEAR,
    KIND_POWER_UPDATE,
    KIND_TOGGLE,
    PayloadError,
    RpcResponse,
    SwitchNotification,
    build_charge_command,
    build_rpc_request,
    parse_current_limit,
    parse_quota,
    parse_rpc_response,
    parse_set_reply,
    parse_switch_notifications,
    parse_switch_status,
)
from .state import ControlConfig, ControlState
from ._log import get_logger, set_debug_logging

_LOGGER = get_logger(__name__)

RpcHandler = Callable[[RpcResponse], None]


class CampGuardCoordinator:
    """Keep the station's AC-in draw under the switch's current limit.

    Owns the single :class:`ControlState` aggregate.  The overcurrent latch
    is set only by a trip notification and cleared only by a clear
    notification; no tick, restore or watchdog path touches it.
    """

    def __init__(
        self, hass: HomeAssistant, entry: ConfigEntry, config: ControlConfig
    ) -> None:
        """Initialise the coordinator from the loaded configuration."""
        self.hass = hass
        self.entry = entry
        self.config = config

        self._time_fn = time.monotonic
        self.state = ControlState.initial(self._time_fn(), config)

        # Topics
        self._component = SWITCH_COMPONENT_FMT.format(switch_id=config.switch_id)
        self._rpc_source = RPC_SOURCE_FMT.format(entry_id=entry.entry_id)
        self._events_topic = SHELLY_EVENTS_TOPIC_FMT.format(prefix=config.shelly_prefix)
        self._rpc_topic = SHELLY_RPC_TOPIC_FMT.format(prefix=config.shelly_prefix)
        self._rpc_reply_topic = RPC_REPLY_TOPIC_FMT.format(source=self._rpc_source)
        self._quota_topic = f"{config.ecoflow_prefix}{TOPIC_QUOTA}"
        self._set_topic = f"{config.ecoflow_prefix}{TOPIC_SET}"
        self._set_reply_topic = f"{config.ecoflow_prefix}{TOPIC_SET_REPLY}"

        # Computed state (read by sensor/binary-sensor entities)
        self.limiter_state: str = resolve_limiter_state(False, False, False)
        self.other_load_w: int | None = None
        self.last_ack_w: float | None = None

        # Outstanding switch RPCs: request id → (method, handler, sent at)
        self._rpc_ids = itertools.count(1)
        self._pending_rpc: dict[int, tuple[str, RpcHandler, float]] = {}
        self._command_ids = itertools.count(random.randrange(1, 1_000_000))

        # Subscription and timer removal callbacks
        self._switch_unsubs: list[Callable[[], None]] = []
        self._telemetry_unsubs: list[Callable[[], None]] = []
        self._unsub_tick: Callable[[], None] | None = None
        self._running = False

        self.signal_update: str = SIGNAL_UPDATE_FMT.format(entry_id=entry.entry_id)

    @property
    def grid_limit_w(self) -> int:
        """Return the grid limit in Watts from the switch's current limit and voltage."""
        return compute_grid_limit_w(self.state.current_limit_a, self.state.voltage_v)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_start(self) -> None:
        """Subscribe to both devices, read the switch once and start the tick."""
        set_debug_logging(self.config.debug)
        self._running = True

        await self._async_subscribe_telemetry()
        await self._async_subscribe_switch()
        self._request_status()
        self._request_current_limit()

        self._unsub_tick = async_track_time_interval(
            self.hass,
            self._handle_tick,
            timedelta(seconds=TICK_INTERVAL_S),
        )
        _LOGGER.info(
            "CampGuard started — switch %s on %s, station prefix %s",
            self._component,
            self.config.shelly_prefix,
            self.config.ecoflow_prefix,
        )

    @callback
    def async_stop(self) -> None:
        """Stop the tick, drop every subscription and forget pending RPCs."""
        self._running = False
        if self._unsub_tick is not None:
            self._unsub_tick()
            self._unsub_tick = None
        self._switch_unsubs = self._unsubscribe(self._switch_unsubs)
        self._telemetry_unsubs = self._unsubscribe(self._telemetry_unsubs)
        self._pending_rpc.clear()
        _LOGGER.debug("Coordinator stopped")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _unsubscribe(unsubs: list[Callable[[], None]]) -> list[Callable[[], None]]:
        for unsub in unsubs:
            unsub()
        return []

    async def _async_subscribe(
        self, topics: list[tuple[str, Callable]]
    ) -> list[Callable[[], None]]:
        """Subscribe to every (topic, handler) pair; all or nothing."""
        unsubs: list[Callable[[], None]] = []
        try:
            for topic, handler in topics:
                unsubs.append(await mqtt.async_subscribe(self.hass, topic, handler))
        except HomeAssistantError as err:
            _LOGGER.warning("Subscribing to %s failed: %s", topic, err)
            return self._unsubscribe(unsubs)
        if not self._running:
            # Stopped while the subscription was in flight
            return self._unsubscribe(unsubs)
        return unsubs

    async def _async_subscribe_switch(self, resync: bool = False) -> None:
        """Replace the switch subscriptions (notifications and RPC replies).

        Replies to requests sent before the replacement are ignored.  With
        *resync*, the relay state and voltage are read again afterwards.
        """
        self._switch_unsubs = self._unsubscribe(self._switch_unsubs)
        self._pending_rpc.clear()
        self._switch_unsubs = await self._async_subscribe(
            [
                (self._events_topic, self._handle_switch_message),
                (self._rpc_reply_topic, self._handle_rpc_reply),
            ]
        )
        if self._switch_unsubs:
            _LOGGER.debug("Switch subscriptions registered on %s", self._events_topic)
            if resync:
                self._request_status()

    async def _async_subscribe_telemetry(self) -> None:
        """Replace the station subscriptions (telemetry and command results)."""
        self._telemetry_unsubs = self._unsubscribe(self._telemetry_unsubs)
        self._telemetry_unsubs = await self._async_subscribe(
            [
                (self._quota_topic, self._handle_quota),
                (self._set_reply_topic, self._handle_set_reply),
            ]
        )
        if self._telemetry_unsubs:
            _LOGGER.debug("Station subscriptions registered on %s", self._quota_topic)

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    def _publish(self, topic: str, payload: str) -> None:
        """Schedule a QoS-1 publish without waiting for it."""
        self.hass.async_create_task(self._async_publish(topic, payload))

    async def _async_publish(self, topic: str, payload: str) -> None:
        try:
            await mqtt.async_publish(self.hass, topic, payload, 1, False)
        except HomeAssistantError as err:
            _LOGGER.warning("Publishing to %s failed: %s", topic, err)

    def _call_switch(
        self, method: str, params: dict | None = None, handler: RpcHandler | None = None
    ) -> None:
        """Send a JSON-RPC request to the switch; *handler* receives the reply."""
        request_id = next(self._rpc_ids)
        if handler is not None:
            self._pending_rpc[request_id] = (method, handler, self._time_fn())
        payload = build_rpc_request(
            request_id,
            self._rpc_source,
            method,
            {"id": self.config.switch_id, **(params or {})},
        )
        self._publish(self._rpc_topic, payload)

    def _request_status(self) -> None:
        self._call_switch(RPC_SWITCH_GET_STATUS, handler=self._on_status_reply)

    def _request_current_limit(self) -> None:
        self._call_switch(RPC_SWITCH_GET_CONFIG, handler=self._on_config_reply)

    # ------------------------------------------------------------------
    # Command gateway
    # ------------------------------------------------------------------

    def _set_charge_power(self, target_w: float, now: float) -> bool:
        """Send a charge power command unless the previous one is too recent.

        The value is quantised and clamped before it is recorded and sent.
        A throttled call does nothing; the caller retries on a later tick.

        Returns:
            True when the command was sent.
        """
        state = self.state
        if (
            state.last_set_at is not None
            and now - state.last_set_at < self.config.set_throttle_s
        ):
            _LOGGER.debug(
                "Charge command throttled (%.1f s since the last one)",
                now - state.last_set_at,
            )
            return False

        power_w = clamp_charge_power(
            target_w,
            self.config.min_charge_w,
            self.config.max_charge_w,
            self.config.quant_w,
        )
        state.station_charge_w = power_w
        state.last_set_at = now
        self._publish(self._set_topic, build_charge_command(power_w, next(self._command_ids)))
        _LOGGER.info("Charge power command sent: %d W", power_w)
        return True

    @callback
    def manual_set_charge_power(self, power_w: float) -> bool:
        """Send a one-shot charge power command, bypassing the optimizer.

        Refused while the overcurrent latch is set.  The next optimizer cycle
        resumes automatic control.

        Returns:
            True when the command was sent.
        """
        if self.state.overcurrent:
            _LOGGER.warning(
                "Manual charge power %.0f W refused — overcurrent is latched", power_w
            )
            return False
        sent = self._set_charge_power(power_w, self._time_fn())
        async_dispatcher_send(self.hass, self.signal_update)
        return sent

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    @callback
    def _handle_tick(self, _now: datetime | None = None) -> None:
        """Run one control cycle: watchdogs, window, then restore or optimize."""
        now = self._time_fn()
        state = self.state

        self._check_watchdogs(now)
        self._expire_rpcs(now)
        state.peak_tracker.prune_and_peak(now)

        if state.overcurrent:
            self._try_restore(now)
        elif (
            state.switch_on
            and now - state.last_optimize_at >= self.config.optimize_interval_s
        ):
            self._optimize(now)
            state.last_optimize_at = now

        self.limiter_state = resolve_limiter_state(
            state.overcurrent,
            state.switch_on,
            is_stale(now, state.last_quota_at, self.config.mqtt_timeout_s),
        )
        async_dispatcher_send(self.hass, self.signal_update)

    def _expire_rpcs(self, now: float) -> None:
        """Forget switch RPCs that went unanswered for too long."""
        expired = [
            request_id
            for request_id, (_method, _handler, sent_at) in self._pending_rpc.items()
            if now - sent_at > RPC_REPLY_TIMEOUT_S
        ]
        for request_id in expired:
            method, _handler, _sent_at = self._pending_rpc.pop(request_id)
            _LOGGER.debug("No reply to switch RPC %s (id %s)", method, request_id)

    def _check_watchdogs(self, now: float) -> None:
        """Re-subscribe when either device has gone quiet for too long.

        Liveness repair only: the latch, the relay state and the command
        history are left alone.
        """
        state = self.state
        silent_s = now - state.last_switch_event_at
        if silent_s > self.config.event_timeout_s:
            _LOGGER.warning(
                "No switch notifications for %.0f s — re-subscribing", silent_s
            )
            state.last_switch_event_at = now
            self.hass.async_create_task(self._async_subscribe_switch(resync=True))

        quiet_s = now - state.last_quota_at
        if (
            quiet_s > self.config.mqtt_timeout_s
            and now - state.last_telemetry_resubscribe_at > self.config.mqtt_timeout_s
        ):
            _LOGGER.warning(
                "No station telemetry for %.0f s — re-subscribing", quiet_s
            )
            state.last_telemetry_resubscribe_at = now
            self.hass.async_create_task(self._async_subscribe_telemetry())

    # ------------------------------------------------------------------
    # Restore after an overcurrent trip
    # ------------------------------------------------------------------

    def _try_restore(self, now: float) -> None:
        """Re-energise the switch at a safe charge level when there is headroom.

        Sets the station to the initial charge power first and turns the
        switch on only if that command was actually sent.  The latch itself
        stays set: only the switch's clear notification resets it.
        """
        state = self.state
        config = self.config

        if now - state.overcurrent_since < config.restore_delay_s:
            return
        if (
            state.last_restore_attempt_at is not None
            and now - state.last_restore_attempt_at < RESTORE_ATTEMPT_INTERVAL_S
        ):
            return
        state.last_restore_attempt_at = now

        if is_stale(now, state.last_quota_at, config.quota_max_age_s):
            _LOGGER.debug(
                "Restore postponed — station telemetry is %.0f s old",
                now - state.last_quota_at,
            )
            return

        expected_w = compute_restore_draw(
            config.initial_charge_w, state.station_ac_out_w, state.station_standby_w
        )
        limit_w = self.grid_limit_w
        _LOGGER.debug(
            "Restore check: expected=%.0f W, limit=%d W, ac_out=%.0f W, standby=%.0f W",
            expected_w,
            limit_w,
            state.station_ac_out_w,
            state.station_standby_w,
        )
        if not has_restore_headroom(expected_w, limit_w):
            return

        if not self._set_charge_power(config.initial_charge_w, now):
            return
        _LOGGER.info(
            "Restoring after overcurrent — turning the switch on at %d W charge power",
            state.station_charge_w,
        )
        self._call_switch(RPC_SWITCH_SET, {"on": True}, self._on_restore_reply)

    def _on_restore_reply(self, reply: RpcResponse) -> None:
        if reply.error is not None:
            return
        now = self._time_fn()
        # Give the meter time to report before the optimizer or gateway act again
        self.state.last_optimize_at = now
        self.state.last_set_at = now
        _LOGGER.info("Switch turned on (restore)")
        self.hass.bus.async_fire(
            EVENT_RESTORED,
            {
                "entry_id": self.entry.entry_id,
                "charge_power_w": self.state.station_charge_w,
            },
        )

    # ------------------------------------------------------------------
    # Optimizer
    # ------------------------------------------------------------------

    def _optimize(self, now: float) -> None:
        """Move the charge power toward the headroom left by other loads."""
        state = self.state
        config = self.config
        limit_w = self.grid_limit_w
        other_w = estimate_other_load_w(
            state.peak_w,
            state.switch_on,
            state.station_charge_w,
            state.station_ac_out_w,
            state.station_standby_w,
        )
        self.other_load_w = other_w
        target_w = compute_charge_target(
            limit_w,
            other_w,
            config.safety_buffer_w,
            config.min_charge_w,
            config.max_charge_w,
            config.quant_w,
        )

        if not needs_adjustment(target_w, state.station_charge_w, config.min_delta_w):
            _LOGGER.debug(
                "Optimizer: no change (current=%d W, target=%d W)",
                state.station_charge_w,
                target_w,
            )
            return

        _LOGGER.info(
            "Optimizer: %s %d W → %d W (peak=%.0f W, other=%d W, limit=%d W)",
            "raising" if target_w > state.station_charge_w else "lowering",
            state.station_charge_w,
            target_w,
            state.peak_w,
            other_w,
            limit_w,
        )
        self._set_charge_power(target_w, now)

    # ------------------------------------------------------------------
    # Switch notifications
    # ------------------------------------------------------------------

    @callback
    def _handle_switch_message(self, msg: mqtt.ReceiveMessage) -> None:
        """Apply the notifications for our switch component from one frame."""
        try:
            notifications = parse_switch_notifications(msg.payload, self._component)
        except PayloadError as err:
            _LOGGER.debug("Discarding switch notification: %s", err)
            return
        if not notifications:
            return

        now = self._time_fn()
        self.state.last_switch_event_at = now
        for notification in notifications:
            self._apply_switch_notification(notification, now)
        async_dispatcher_send(self.hass, self.signal_update)

    def _apply_switch_notification(
        self, notification: SwitchNotification, now: float
    ) -> None:
        state = self.state
        kind = notification.kind

        if kind == KIND_TOGGLE:
            if notification.state is None:
                return
            state.switch_on = notification.state
            _LOGGER.info("Switch turned %s", "on" if state.switch_on else "off")
            if not state.switch_on:
                state.peak_tracker.clear()
        elif kind == KIND_POWER_UPDATE:
            if state.switch_on and notification.power_w is not None:
                state.peak_tracker.record(notification.power_w, now)
                _LOGGER.debug(
                    "Power %.1f W, window peak %.1f W (overcurrent=%s)",
                    notification.power_w,
                    state.peak_w,
                    state.overcurrent,
                )
        elif kind == KIND_OVERCURRENT:
            self._on_overcurrent(now)
        elif kind == KIND_OVERCURRENT_CLEAR:
            self._on_overcurrent_clear()
        elif kind == KIND_CONFIG_CHANGED:
            self._request_current_limit()

    def _on_overcurrent(self, now: float) -> None:
        """Latch the trip; the relay is off and the window no longer applies."""
        peak_w = self.state.peak_w
        self.state.latch_overcurrent(now)
        _LOGGER.warning(
            "Overcurrent trip at %.1f A limit (window peak %.0f W) — switch is off",
            self.state.current_limit_a,
            peak_w,
        )
        entry_id = self.entry.entry_id
        self.hass.bus.async_fire(
            EVENT_OVERCURRENT,
            {
                "entry_id": entry_id,
                "current_limit_a": self.state.current_limit_a,
                "peak_w": peak_w,
            },
        )
        pn_async_create(
            self.hass,
            (
                f"The switch tripped at its {self.state.current_limit_a} A limit. "
                "CampGuard will turn it back on at a reduced charge power once "
                "there is enough headroom."
            ),
            title="CampGuard — Overcurrent",
            notification_id=NOTIFICATION_OVERCURRENT_FMT.format(entry_id=entry_id),
        )

    def _on_overcurrent_clear(self) -> None:
        was_latched = self.state.overcurrent
        self.state.release_overcurrent()
        _LOGGER.info("Overcurrent cleared")
        if not was_latched:
            return
        entry_id = self.entry.entry_id
        self.hass.bus.async_fire(EVENT_OVERCURRENT_CLEARED, {"entry_id": entry_id})
        pn_async_dismiss(
            self.hass, NOTIFICATION_OVERCURRENT_FMT.format(entry_id=entry_id)
        )

    # ------------------------------------------------------------------
    # Switch RPC replies
    # ------------------------------------------------------------------

    @callback
    def _handle_rpc_reply(self, msg: mqtt.ReceiveMessage) -> None:
        """Route an RPC reply to the handler registered for its request id."""
        try:
            reply = parse_rpc_response(msg.payload)
        except PayloadError as err:
            _LOGGER.debug("Discarding RPC reply: %s", err)
            return

        pending = self._pending_rpc.pop(reply.request_id, None)
        if pending is None:
            _LOGGER.debug("Ignoring reply to unknown RPC request %s", reply.request_id)
            return

        method, handler, _sent_at = pending
        if reply.error is not None:
            _LOGGER.warning(
                "Switch RPC %s failed: %s",
                method,
                reply.error.get("message", reply.error),
            )
        handler(reply)
        async_dispatcher_send(self.hass, self.signal_update)

    def _on_status_reply(self, reply: RpcResponse) -> None:
        if reply.error is not None or reply.result is None:
            return
        status = parse_switch_status(reply.result)
        state = self.state
        if status.voltage_v is not None:
            state.voltage_v = status.voltage_v
        if status.output is not None:
            if state.switch_on and not status.output:
                state.peak_tracker.clear()
            state.switch_on = status.output
        # The latch is never derived from polled status
        _LOGGER.info(
            "Switch status: %s, overcurrent latched=%s, %.1f V",
            "on" if state.switch_on else "off",
            state.overcurrent,
            state.voltage_v,
        )

    def _on_config_reply(self, reply: RpcResponse) -> None:
        if reply.error is not None or reply.result is None:
            return
        current_limit_a = parse_current_limit(reply.result)
        if current_limit_a is None or current_limit_a == self.state.current_limit_a:
            return
        self.state.current_limit_a = current_limit_a
        _LOGGER.info(
            "Current limit: %.1f A (%d W)", current_limit_a, self.grid_limit_w
        )

    # ------------------------------------------------------------------
    # Station messages
    # ------------------------------------------------------------------

    @callback
    def _handle_quota(self, msg: mqtt.ReceiveMessage) -> None:
        """Ingest station telemetry; receipt alone proves the link is alive."""
        self.state.last_quota_at = self._time_fn()
        try:
            quota = parse_quota(msg.payload)
        except PayloadError as err:
            _LOGGER.debug("Discarding station telemetry: %s", err)
            return

        if quota.ac_out_w is not None:
            self.state.station_ac_out_w = quota.ac_out_w
        if quota.standby_w is not None:
            self.state.station_standby_w = quota.standby_w
        _LOGGER.debug(
            "Station: ac_out=%.0f W, standby=%.0f W",
            self.state.station_ac_out_w,
            self.state.station_standby_w,
        )
        async_dispatcher_send(self.hass, self.signal_update)

    @callback
    def _handle_set_reply(self, msg: mqtt.ReceiveMessage) -> None:
        """Log the station's answer to a charge command (observability only)."""
        try:
            reply = parse_set_reply(msg.payload)
        except PayloadError as err:
            _LOGGER.debug("Discarding command reply: %s", err)
            return

        if reply.accepted is True:
            self.last_ack_w = (
                reply.power_w
                if reply.power_w is not None
                else float(self.state.station_charge_w)
            )
            _LOGGER.info("Station acknowledged charge power %.0f W", self.last_ack_w)
            async_dispatcher_send(self.hass, self.signal_update)
        elif reply.accepted is False:
            _LOGGER.warning("Station rejected a charge command: %s", reply.raw)
