"""Run the EMP monitor: `python -m emp_monitor`."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from emp_monitor.config import get_settings
from emp_monitor.service import MonitorService

logger = logging.getLogger("emp_monitor")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Configuration: %s", settings.redacted_summary())

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(MonitorService(settings).run())


if __name__ == "__main__":
    main()
