"""Network and power conditions consulted before each pass."""

from __future__ import annotations

import logging
from collections.abc import Callable

import psutil

from kb_sync.config import NetworkClass

logger = logging.getLogger(__name__)


class SystemConditions:
    """Reads the battery through ``psutil`` and the network class from a hint.

    There is no portable way to tell a metered link from an unmetered one,
    so the network class comes from *network_hint*, a callable evaluated
    on every query (typically ``settings.network_class``).
    """

    def __init__(
        self,
        network_hint: Callable[[], NetworkClass] = lambda: NetworkClass.UNCONSTRAINED,
    ) -> None:
        self._network_hint = network_hint

    def network_class(self) -> NetworkClass:
        return self._network_hint()

    def battery_percent(self) -> float | None:
        battery = self._battery()
        return float(battery.percent) if battery is not None else None

    def is_charging(self) -> bool:
        battery = self._battery()
        # No battery means mains power.
        return battery is None or bool(battery.power_plugged)

    @staticmethod
    def _battery():
        if not hasattr(psutil, "sensors_battery"):
            return None
        try:
            return psutil.sensors_battery()
        except (OSError, RuntimeError) as exc:
            logger.debug("Battery query failed: %s", exc)
            return None


class StaticConditions:
    """Fixed conditions, for tests and for hosts that push their own state."""

    def __init__(
        self,
        network: NetworkClass = NetworkClass.UNCONSTRAINED,
        battery: float | None = None,
        charging: bool = True,
    ) -> None:
        self.network = network
        self.battery = battery
        self.charging = charging

    def network_class(self) -> NetworkClass:
        return self.network

    def battery_percent(self) -> float | None:
        return self.battery

    def is_charging(self) -> bool:
        return self.charging
