"""Built-in execution backends, selected by configured name."""

from __future__ import annotations

import logging
from typing import Any

from cnab_runtime.driver import Driver
from cnab_runtime.drivers.command import CommandDriver
from cnab_runtime.drivers.debug import DebugDriver
from cnab_runtime.exceptions import DriverNotFoundError

logger = logging.getLogger(__name__)

DRIVERS: dict[str, type] = {
    DebugDriver.name: DebugDriver,
    CommandDriver.name: CommandDriver,
}


def create_driver(name: str, config: dict[str, Any] | None = None) -> Driver:
    """Instantiate the driver registered under ``name``.

    Args:
        name: Driver name (``debug``, ``command``).
        config: Driver-specific settings, usually ``drivers.<name>`` from settings.

    Raises:
        DriverNotFoundError: If no driver has that name.
    """
    driver_class = DRIVERS.get(name)
    if driver_class is None:
        raise DriverNotFoundError(
            f"unsupported driver {name!r}, expected one of {', '.join(sorted(DRIVERS))}"
        )
    logger.debug(f"Using driver {name}")
    return driver_class(config or {})


__all__ = ["DRIVERS", "CommandDriver", "DebugDriver", "create_driver"]
