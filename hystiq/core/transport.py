"""Interface the core expects from the Home Assistant transport."""

from typing import Protocol

from hystiq.core.entities import HVACMode


class HVACTransport(Protocol):
    """Reads sensors and commands climate entities.

    Implementations either raise or return ``False`` when a command fails.
    Sensor-changed notifications are pushed into
    ``HVACController.notify_sensor_change`` by the implementation.
    """

    async def read_sensor(self, entity_id: str) -> float: ...

    async def issue_command(
        self,
        entity_id: str,
        mode: HVACMode,
        target_temp: float | None = None,
        preset: str | None = None,
    ) -> bool: ...
