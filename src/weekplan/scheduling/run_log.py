"""Log trail shared by a single solver or optimizer run."""

import logging
from typing import Iterable, Optional


class RunLog:
    """Collects the diagnostic log trail returned with a result.

    Every line is also forwarded to a standard library logger, so callers can
    watch a run live. The trail is diagnostic only and never drives control
    flow.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.lines: list[str] = []

    def info(self, message: str) -> None:
        self.logger.info(message)
        self.lines.append(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)
        self.lines.append(f"WARNING: {message}")

    def debug(self, message: str) -> None:
        # Debug lines are too noisy for the stored trail.
        self.logger.debug(message)

    def extend(self, lines: Iterable[str]) -> None:
        self.lines.extend(lines)

    @property
    def warnings(self) -> list[str]:
        return [line for line in self.lines if line.startswith("WARNING: ")]
