"""Coloured console logging shared by the API, the crawler and the CLI."""
import logging
import os
import sys
from typing import Callable, Optional

from colorama import Fore, Style, init as colorama_init

ProgressCallback = Callable[[str, str], None]

_LEVEL_COLORS = {
	"DEBUG": Fore.WHITE,
	"INFO": Fore.CYAN,
	"WARNING": Fore.YELLOW,
	"ERROR": Fore.RED,
	"CRITICAL": Fore.RED,
}
_LEVEL_TAGS = {"WARNING": "WARN", "CRITICAL": "ERROR"}

ROOT_LOGGER = "superschema"


class ColorFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		color = _LEVEL_COLORS.get(record.levelname, "")
		tag = _LEVEL_TAGS.get(record.levelname, record.levelname)
		message = super().format(record)
		return f"{color}[{tag}]{Style.RESET_ALL} {message}"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
	colorama_init()
	logger = logging.getLogger(ROOT_LOGGER)
	level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
	logger.setLevel(getattr(logging, level_name, logging.INFO))
	if not logger.handlers:
		handler = logging.StreamHandler(sys.stdout)
		handler.setFormatter(ColorFormatter("%(message)s"))
		logger.addHandler(handler)
	logger.propagate = False
	return logger


def get_logger(name: str) -> logging.Logger:
	root = logging.getLogger(ROOT_LOGGER)
	if not root.handlers:
		setup_logging()
	if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
		return logging.getLogger(name)
	return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class ProgressLog:
	"""Logger wrapper that also forwards messages to a job's progress callback."""

	def __init__(self, logger: logging.Logger, callback: Optional[ProgressCallback] = None):
		self.logger = logger
		self.callback = callback

	def _emit(self, level: str, message: str) -> None:
		if self.callback:
			self.callback(level, message)

	def info(self, message: str) -> None:
		self.logger.info(message)
		self._emit("info", message)

	def warn(self, message: str) -> None:
		self.logger.warning(message)
		self._emit("warn", message)

	def error(self, message: str) -> None:
		self.logger.error(message)
		self._emit("error", message)


def banner(title: str) -> None:
	print(Fore.MAGENTA + "\n" + "═" * 60 + Style.RESET_ALL)
	print(Fore.MAGENTA + f"  {title}" + Style.RESET_ALL)
	print(Fore.MAGENTA + "═" * 60 + Style.RESET_ALL)
