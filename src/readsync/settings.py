import json
import logging
import math
import os
import platform
import uuid
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional

from .digest import CHECKSUM_BINARY, CHECKSUM_FILENAME, password_digest

logger = logging.getLogger(__name__)

STRATEGY_PROMPT = "prompt"
STRATEGY_SILENT = "silent"
STRATEGY_SEND = "send"
STRATEGY_RECEIVE = "receive"
STRATEGY_DISABLED = "disabled"

STRATEGIES = (STRATEGY_PROMPT, STRATEGY_SILENT, STRATEGY_SEND, STRATEGY_RECEIVE, STRATEGY_DISABLED)
CHECKSUM_METHODS = (CHECKSUM_BINARY, CHECKSUM_FILENAME)

# Strategies that never write to the server
NO_PUSH_STRATEGIES = (STRATEGY_RECEIVE, STRATEGY_DISABLED)

DEFAULT_PRECISION = 4
DEFAULT_TOLERANCE = 1e-4
DEFAULT_PUSH_DELAY = 5.0
APP_NAME = "ReadSync"


def tolerance_from_precision(precision: int) -> float:
    """4 -> 0.0001"""
    return math.pow(10, -precision)


def precision_from_tolerance(tolerance: Optional[float]) -> int:
    if not tolerance or tolerance <= 0:
        return DEFAULT_PRECISION
    return round(-math.log10(tolerance))


def _format_os_name(name: str) -> str:
    if not name:
        return ""
    lowered = name.lower()
    if lowered in ("darwin", "macos"):
        return "macOS"
    if lowered == "ios":
        return "iOS"
    return name[0].upper() + name[1:]


def default_device_name() -> str:
    os_name = _format_os_name(platform.system())
    return f"{APP_NAME} ({os_name})" if os_name else APP_NAME


def new_device_id() -> str:
    return uuid.uuid4().hex.upper()


@dataclass
class SyncSettings:
    server_url: str = ""
    username: str = ""
    userkey: str = ""
    device_id: str = ""
    device_name: str = ""
    checksum_method: str = CHECKSUM_BINARY
    strategy: str = STRATEGY_DISABLED
    percentage_tolerance: float = DEFAULT_TOLERANCE
    relay_url: str = ""
    push_delay: float = DEFAULT_PUSH_DELAY

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            logger.warning(f"Unknown sync strategy '{self.strategy}', sync disabled")
            self.strategy = STRATEGY_DISABLED
        if self.checksum_method not in CHECKSUM_METHODS:
            logger.warning(f"Unknown checksum method '{self.checksum_method}', using binary")
            self.checksum_method = CHECKSUM_BINARY

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.userkey)

    @property
    def can_push(self) -> bool:
        return self.has_credentials and self.strategy not in NO_PUSH_STRATEGIES

    @property
    def precision(self) -> int:
        """Digits after the decimal point that must match for two percentages to count as equal."""
        return precision_from_tolerance(self.percentage_tolerance)

    @property
    def resolved_device_name(self) -> str:
        return self.device_name or default_device_name()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SyncSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def updated(self, **changes) -> "SyncSettings":
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        userkey = os.environ.get("KOSYNC_USERKEY", "")
        if not userkey and os.environ.get("KOSYNC_KEY"):
            userkey = password_digest(os.environ["KOSYNC_KEY"])
        return cls(
            server_url=os.environ.get("KOSYNC_SERVER", "").rstrip('/'),
            username=os.environ.get("KOSYNC_USER", ""),
            userkey=userkey,
            device_id=os.environ.get("KOSYNC_DEVICE_ID", ""),
            device_name=os.environ.get("KOSYNC_DEVICE_NAME", ""),
            checksum_method=os.environ.get("KOSYNC_CHECKSUM_METHOD", CHECKSUM_BINARY),
            strategy=os.environ.get("KOSYNC_STRATEGY", STRATEGY_PROMPT if userkey else STRATEGY_DISABLED),
            percentage_tolerance=_tolerance_from_env(),
            relay_url=os.environ.get("KOSYNC_RELAY_URL", ""),
            push_delay=float(os.environ.get("KOSYNC_PUSH_DELAY", DEFAULT_PUSH_DELAY)),
        )


def _tolerance_from_env() -> float:
    precision = os.environ.get("KOSYNC_PRECISION")
    if precision:
        return tolerance_from_precision(int(precision))
    return float(os.environ.get("KOSYNC_TOLERANCE", DEFAULT_TOLERANCE))


class JsonSettingsStore:
    """Keeps one SyncSettings record in a JSON file."""

    def __init__(self, path):
        self.path = Path(path)
        self._settings: Optional[SyncSettings] = None

    def load(self, default: Optional[SyncSettings] = None) -> SyncSettings:
        data = None
        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Could not read settings from {self.path}: {e}")
        if isinstance(data, dict):
            self._settings = SyncSettings.from_dict(data)
        else:
            self._settings = default or SyncSettings()
        return self._settings

    def get(self) -> SyncSettings:
        if self._settings is None:
            return self.load()
        return self._settings

    def save(self, settings: SyncSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2)
        os.replace(tmp, self.path)
        self._settings = settings
        logger.debug(f"Saved sync settings to {self.path}")
