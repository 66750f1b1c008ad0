import logging
from dataclasses import dataclass
from typing import Optional

from .digest import Book, document_digest, password_digest
from .errors import TransportError
from .settings import SyncSettings
from .transport import select_transport

logger = logging.getLogger(__name__)


@dataclass
class ConnectResult:
    success: bool
    message: str = ""


@dataclass
class ProgressRecord:
    document: str
    progress: Optional[str] = None
    percentage: Optional[float] = None
    timestamp: Optional[int] = None
    device: Optional[str] = None
    device_id: Optional[str] = None

    @classmethod
    def from_json(cls, data) -> Optional["ProgressRecord"]:
        """Returns None for the empty body the server sends for never-synced documents."""
        if not isinstance(data, dict) or not data.get('document'):
            return None
        percentage = data.get('percentage')
        timestamp = data.get('timestamp')
        progress = data.get('progress')
        return cls(
            document=data['document'],
            progress=str(progress) if progress is not None else None,
            percentage=float(percentage) if percentage is not None else None,
            timestamp=int(timestamp) if timestamp is not None else None,
            device=data.get('device'),
            device_id=data.get('device_id'),
        )

    def to_payload(self) -> dict:
        return {
            "document": self.document,
            "progress": self.progress,
            "percentage": self.percentage,
            "device": self.device,
            "device_id": self.device_id,
        }


def _error_message(response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get('message') if isinstance(body, dict) else None


class KoSyncClient:
    def __init__(self, settings: SyncSettings, transport=None):
        self.settings = settings
        self.base_url = settings.server_url.rstrip('/')
        self.user = settings.username
        self.auth_token = settings.userkey
        self.transport = transport or select_transport(self.base_url, settings.relay_url)

    def _auth_headers(self, user=None, key=None):
        return {
            "X-Auth-User": user if user is not None else self.user,
            "X-Auth-Key": key if key is not None else self.auth_token,
        }

    def connect(self, username: str, password: str) -> ConnectResult:
        userkey = password_digest(password)
        try:
            r = self.transport.request("/users/auth", "GET", headers=self._auth_headers(username, userkey))
            if r.ok:
                logger.info(f"✅ Connected to KoSync Server at {self.base_url} as {username}")
                self.user, self.auth_token = username, userkey
                return ConnectResult(True, "Login successful.")

            if r.status_code == 401:
                logger.info(f"KoSync user {username} unknown, trying to register")
                reg = self.transport.request(
                    "/users/create", "POST",
                    headers={"Content-Type": "application/json"},
                    body={"username": username, "password": userkey},
                )
                if reg.ok:
                    logger.info(f"✅ Registered {username} at {self.base_url}")
                    self.user, self.auth_token = username, userkey
                    return ConnectResult(True, "Registration successful.")
                if reg.status_code == 402:
                    logger.error(f"❌ KoSync rejected credentials for {username}")
                    return ConnectResult(False, "Invalid credentials.")
                return ConnectResult(False, _error_message(reg) or "Registration failed.")

            message = _error_message(r) or f"Authorization failed with status: {r.status_code}"
            logger.error(f"❌ KoSync Connection Failed: {r.status_code}")
            return ConnectResult(False, message)
        except TransportError as e:
            logger.error(f"❌ Could not connect to KoSync at {self.base_url}: {e}")
            return ConnectResult(False, str(e) or "Connection error.")

    def get_progress(self, book: Book) -> Optional[ProgressRecord]:
        if not self.auth_token:
            return None
        doc_id = document_digest(book, self.settings.checksum_method)
        if not doc_id:
            return None

        try:
            r = self.transport.request(f"/syncs/progress/{doc_id}", "GET", headers=self._auth_headers())
            if not r.ok:
                logger.error(f"KoSync: Failed to get progress for {book.title}. Status: {r.status_code}")
                return None
            return ProgressRecord.from_json(r.json())
        except (TransportError, ValueError) as e:
            logger.error(f"KoSync get_progress failed for {book.title}: {e}")
            return None

    def update_progress(self, book: Book, progress: str, percentage: float) -> bool:
        if not self.auth_token:
            return False
        doc_id = document_digest(book, self.settings.checksum_method)
        if not doc_id:
            return False

        record = ProgressRecord(
            document=doc_id,
            progress=str(progress),
            percentage=percentage,
            device=self.settings.resolved_device_name,
            device_id=self.settings.device_id,
        )
        headers = self._auth_headers()
        headers["Content-Type"] = "application/json"
        try:
            r = self.transport.request("/syncs/progress", "PUT", headers=headers, body=record.to_payload())
            if not r.ok:
                logger.error(f"  KoSync Update Failed for {book.title}: {r.status_code} - {r.text}")
                return False
            logger.info(f"  KoSync updated {book.title} to {percentage:.1%} (HTTP {r.status_code})")
            return True
        except TransportError as e:
            logger.error(f"Failed to update KoSync: {e}")
            return False
