import logging
from typing import Optional

from .digest import password_digest
from .errors import AuthError
from .kosync_client import ConnectResult, KoSyncClient
from .settings import (
    STRATEGY_DISABLED, STRATEGY_PROMPT, JsonSettingsStore, SyncSettings, new_device_id,
    tolerance_from_precision,
)

logger = logging.getLogger(__name__)


def login(store: JsonSettingsStore, server_url: str, username: str, password: str,
          device_name: Optional[str] = None, precision: Optional[int] = None,
          client_factory=None) -> ConnectResult:
    """Checks (or registers) the account and persists the credentials only if that worked."""
    current = store.get()
    device_id = current.device_id or new_device_id()
    candidate = current.updated(
        server_url=server_url.rstrip('/'),
        username=username,
        userkey=password_digest(password),
        device_id=device_id,
        device_name=device_name if device_name is not None else current.device_name,
    )
    if precision is not None:
        candidate = candidate.updated(percentage_tolerance=tolerance_from_precision(precision))

    result = (client_factory or KoSyncClient)(candidate).connect(username, password)
    if not result.success:
        raise AuthError(f"Failed to connect: {result.message or 'Connection error'}")

    strategy = STRATEGY_PROMPT if current.strategy == STRATEGY_DISABLED else current.strategy
    saved = candidate.updated(strategy=strategy)
    store.save(saved)
    logger.info(f"KoSync account {username} saved ({result.message}), percentages match to {saved.precision} digits")
    return result


def logout(store: JsonSettingsStore) -> SyncSettings:
    settings = store.get().updated(userkey="", strategy=STRATEGY_DISABLED)
    store.save(settings)
    logger.info("KoSync disconnected")
    return settings
