import logging
import os
import sys
from datetime import datetime
from typing import Dict, Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGER = "strategy_sim"


class CustomFormatter(logging.Formatter):
    """
    Console formatter. Engine trade lines are coloured by their tag
    (+++ open, --- close, [HEDGE]); everything else by level.
    """

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    green = "\x1b[32;20m"
    cyan = "\x1b[36;20m"
    magenta = "\x1b[35;20m"
    reset = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: grey,
        logging.INFO: reset,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    TAG_COLORS = (
        ("+++ [OPEN]", green),
        ("--- [CLOSED]", cyan),
        ("[HEDGE]", magenta),
    )

    def __init__(self, use_color: bool = True):
        super().__init__(LOG_FORMAT)
        self.use_color = use_color

    def color_for(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.INFO:
            message = record.getMessage()
            for tag, color in self.TAG_COLORS:
                if message.startswith(tag):
                    return color
        return self.LEVEL_COLORS.get(record.levelno, self.reset)

    def format(self, record):
        text = super().format(record)
        if not self.use_color:
            return text
        return f"{self.color_for(record)}{text}{self.reset}"


def _install(pkg_logger: logging.Logger, handler: logging.Handler, level: str,
             formatter: logging.Formatter):
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(formatter)
    pkg_logger.addHandler(handler)


def setup_logging(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Configures the package logger from a dict and returns the run timestamp.

    Shape: {"logging": {"console": {"enabled", "level", "color"},
    "file": {"enabled", "level", "path"}}}. "{timestamp}" in the file path
    is replaced with the returned timestamp. Calling it again replaces the
    handlers of the previous call.
    """
    if config is None:
        from strategy_sim.settings import LOGGING_CONFIG
        config = LOGGING_CONFIG

    log_config = config.get("logging", {})
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(logging.DEBUG)  # handlers filter
    pkg_logger.propagate = False

    for handler in pkg_logger.handlers[:]:
        pkg_logger.removeHandler(handler)
        handler.close()

    console_cfg = log_config.get("console", {})
    if console_cfg.get("enabled", True):
        stream = sys.stderr
        use_color = console_cfg.get("color", stream.isatty())
        _install(pkg_logger, logging.StreamHandler(stream), console_cfg.get("level", "INFO"),
                 CustomFormatter(use_color=use_color))

    file_cfg = log_config.get("file", {})
    if file_cfg.get("enabled", False):
        log_path = file_cfg.get("path", "strategy_sim_{timestamp}.log").replace("{timestamp}", ts)
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        _install(pkg_logger, logging.FileHandler(log_path), file_cfg.get("level", "DEBUG"),
                 logging.Formatter(LOG_FORMAT))

    logging.getLogger(f"{PACKAGE_LOGGER}.logger").info(f"Logging initialized (run {ts}).")
    return ts
