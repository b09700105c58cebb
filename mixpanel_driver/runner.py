"""
Host-side job runner.

Runs one (resource, operation) pair over a list of parameter items,
the way a workflow step processes its input items. With
continue_on_fail, a failing item is reported as an error record and the
remaining items still run.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import __version__
from .client import MixpanelDriver
from .exceptions import DriverError
from .operations import OperationRegistry, build_registry

logger = logging.getLogger(__name__)

NOTICE = (
    f"mixpanel-driver {__version__}: sends data to Mixpanel on behalf of the "
    "configured project. Check the project's data processing terms before "
    "running in production."
)


@dataclass
class NoticeState:
    """
    Whether the startup notice was already logged.

    Create one per process run and pass it to every run_job call. Only the
    runner writes it; the driver never reads it.
    """
    logged: bool = False

    def emit_once(self) -> None:
        if not self.logged:
            logger.warning(NOTICE)
            self.logged = True


def run_job(
    driver: MixpanelDriver,
    resource: str,
    operation: str,
    items: List[Dict[str, Any]],
    continue_on_fail: bool = False,
    notice: Optional[NoticeState] = None,
    registry: Optional[OperationRegistry] = None,
) -> List[Dict[str, Any]]:
    """
    Execute the handler for every item, in order.

    Args:
        driver: Configured MixpanelDriver
        resource: e.g. "event"
        operation: e.g. "trackBatch"
        items: Parameter mappings, one per item
        continue_on_fail: Report item failures as {"error", "item_index"} records
        notice: Process-wide notice state
        registry: Registry to use (default: build_registry())

    Returns:
        Output records of all items, concatenated

    Raises:
        DriverError: First item failure when continue_on_fail is False
    """
    if notice is not None:
        notice.emit_once()

    registry = registry or build_registry()
    handler = registry.get(resource, operation)

    output = []
    for index, params in enumerate(items):
        try:
            records = handler(driver, params)
        except DriverError as e:
            if not continue_on_fail:
                e.details.setdefault("item_index", index)
                raise
            logger.error(f"Item {index} failed ({resource}.{operation}): {e}")
            output.append({"error": e.message, "item_index": index, "details": e.details})
            continue

        logger.info(f"Item {index}: {resource}.{operation} produced {len(records)} records")
        output.extend(records)

    return output
