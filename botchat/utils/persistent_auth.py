"""Persistent refresh-token storage using the file system

Entries are keyed by a per-browser device key, so each visitor of a shared
server only ever restores the session saved from their own browser.
"""
import hashlib
import json
import os
import platform
import time
from pathlib import Path
from typing import Dict, Optional

from botchat.infra.logger import logger

persist_logger = logger.getChild("PersistentAuth")

VALIDITY_DAYS = 30
_SECONDS_PER_DAY = 24 * 60 * 60


def _auth_cache_dir() -> Path:
    cache_dir = Path(os.getenv("AUTH_CACHE_DIR", str(Path.home() / ".botchat_auth")))
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_machine_id() -> str:
    """Get a unique identifier for this machine"""
    machine_info = f"{platform.node()}_{platform.machine()}_{platform.system()}"
    return hashlib.sha256(machine_info.encode()).hexdigest()[:16]


def _get_auth_file_path(device_key: str) -> Path:
    if not device_key:
        raise ValueError("A device key is required to locate persistent auth")
    # Hashed so the raw key never appears on disk
    digest = hashlib.sha256(f"{get_machine_id()}:{device_key}".encode()).hexdigest()[:32]
    return _auth_cache_dir() / f"auth_{digest}.json"


def store_persistent_auth(device_key: str, email: Optional[str], refresh_token: str) -> bool:
    """Store the refresh token so the next session from this browser can be restored"""
    try:
        auth_file = _get_auth_file_path(device_key)
        auth_data = {
            'email': email,
            'machine_id': get_machine_id(),
            'timestamp': int(time.time()),
            'refresh_token': refresh_token,
            'expires_in_days': VALIDITY_DAYS,
        }
        with open(auth_file, 'w') as f:
            json.dump(auth_data, f, indent=2)
        # Owner-only; the file holds a live credential
        os.chmod(auth_file, 0o600)
        persist_logger.debug("Stored persistent auth for %s in %s", email, auth_file)
        return True
    except OSError as e:
        persist_logger.warning("Error storing persistent auth: %s", e)
        return False


def get_persistent_auth(device_key: str) -> Optional[Dict]:
    """Return stored auth data for this browser when present and not expired"""
    auth_file = _get_auth_file_path(device_key)
    if not auth_file.exists():
        persist_logger.debug("No auth file found at %s", auth_file)
        return None

    try:
        with open(auth_file, 'r') as f:
            auth_data = json.load(f)
    except (OSError, ValueError) as e:
        persist_logger.warning("Unreadable auth file %s, removing it: %s", auth_file, e)
        auth_file.unlink(missing_ok=True)
        return None

    if is_persistent_auth_valid(auth_data):
        return auth_data

    persist_logger.info("Auth file expired, cleaning up")
    auth_file.unlink(missing_ok=True)
    return None


def clear_persistent_auth(device_key: str) -> bool:
    """Remove this browser's auth file and any stale ones"""
    try:
        _get_auth_file_path(device_key).unlink(missing_ok=True)

        current_time = time.time()
        for stale in _auth_cache_dir().glob("auth_*.json"):
            if current_time - stale.stat().st_mtime > VALIDITY_DAYS * _SECONDS_PER_DAY:
                stale.unlink(missing_ok=True)

        persist_logger.debug("Persistent auth cleared")
        return True
    except OSError as e:
        persist_logger.warning("Error clearing persistent auth: %s", e)
        return False


def is_persistent_auth_valid(auth_data: Optional[Dict]) -> bool:
    """Check if persistent auth data is complete and not expired"""
    if not auth_data:
        return False

    if not all(auth_data.get(field) for field in ('refresh_token', 'timestamp')):
        return False

    days_elapsed = (int(time.time()) - auth_data['timestamp']) / _SECONDS_PER_DAY
    return days_elapsed < VALIDITY_DAYS
