"""AppDaemon App for HystiQ.

This is the main entry point for Home Assistant integration. Example
``apps.yaml`` entry::

    hystiq:
      module: hystiq.appdaemon.hystiq_app
      class: HystiQ
      config_file: /conf/hystiq.yaml
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import appdaemon.plugins.hass.hassapi as hass

from hystiq.config import HystiqSettings
from hystiq.core.controller import HVACController, parse_temperature
from hystiq.core.entities import HVACMode
from hystiq.core.exceptions import HVACOperationError, StateError

STATUS_ENTITY = "sensor.hystiq_state"
OVERRIDE_EVENT = "hystiq_override"


class HystiQ(hass.Hass):
    """AppDaemon app running the anti-cycling controller.

    The app itself is the controller's transport: sensor reads go through
    ``get_state`` and unit commands through ``call_service``.
    """

    async def initialize(self):
        """Initialize the app - called by AppDaemon."""
        self.log("Initializing HystiQ...")

        self.settings = self._load_settings()
        hvac = self.settings.hvac_options
        logging.getLogger("hystiq").setLevel(self.settings.app_options.log_level.value.upper())

        self.controller = HVACController(hvac, self)

        await self.listen_state(self._on_temperature_change, hvac.temp_sensor)
        await self.listen_state(self._on_temperature_change, hvac.outdoor_sensor)
        await self.listen_event(self._on_override_event, OVERRIDE_EVENT)

        await self.controller.start()

        await self.run_every(self._update_dashboard, datetime.now() + timedelta(seconds=10), 30)

        self.log(
            f"HystiQ initialized in {self.controller.machine.current_state.value} state "
            f"({len(hvac.enabled_entities)} units, system mode {hvac.system_mode.value})"
        )

    async def terminate(self):
        await self.controller.stop()

    def _load_settings(self) -> HystiqSettings:
        """Load settings from ``config_file`` or from the inline app args."""
        config_file = self.args.get("config_file")
        if config_file:
            return HystiqSettings.from_yaml(Path(config_file))
        return HystiqSettings.from_dict(dict(self.args))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def read_sensor(self, entity_id: str) -> float:
        state = await self.get_state(entity_id)
        value = parse_temperature(state)
        if value is None:
            raise HVACOperationError(
                f"Sensor {entity_id} has no usable value ({state!r})", entity_id=entity_id
            )
        return value

    async def issue_command(
        self,
        entity_id: str,
        mode: HVACMode,
        target_temp: float | None = None,
        preset: str | None = None,
    ) -> bool:
        await self.call_service("climate/set_hvac_mode", entity_id=entity_id, hvac_mode=mode.value)
        if mode == HVACMode.OFF:
            return True
        if target_temp is not None:
            await self.call_service(
                "climate/set_temperature", entity_id=entity_id, temperature=target_temp
            )
        if preset:
            await self.call_service(
                "climate/set_preset_mode", entity_id=entity_id, preset_mode=preset
            )
        return True

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def _on_temperature_change(self, entity, attribute, old, new, kwargs):
        """Handle indoor/outdoor temperature sensor change."""
        self.controller.notify_sensor_change(entity, new)

    async def _on_override_event(self, event_name, data, kwargs):
        """Handle a ``hystiq_override`` event fired from Home Assistant."""
        mode = data.get("mode")
        if not mode:
            self.log(f"Ignoring {event_name} without mode", level="WARNING")
            return
        try:
            await self.controller.manual_override(
                mode, parse_temperature(data.get("temperature")), data.get("preset")
            )
        except StateError as e:
            self.log(f"Override rejected: {e}", level="WARNING")

    async def _update_dashboard(self, kwargs):
        """Publish controller status as a Home Assistant sensor."""
        status = self.controller.get_status()
        context: dict[str, Any] = status["context"]
        override = context.get("manual_override")
        await self.set_state(
            STATUS_ENTITY,
            state=status["current_state"],
            attributes={
                "friendly_name": "HystiQ state",
                "indoor_temp": context.get("indoor_temp"),
                "outdoor_temp": context.get("outdoor_temp"),
                "system_mode": status["system_mode"],
                "manual_override": override["mode"] if override else None,
                "last_defrost": context.get("last_defrost"),
                "can_heat": status["can_heat"],
                "can_cool": status["can_cool"],
                "hysteresis_health": status["hysteresis_health"]["status"],
                "last_update": status["last_update"],
            },
        )
