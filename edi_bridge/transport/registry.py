"""
EDI Bridge - Profile Registry

Thread-safe keyed store for partner and local profiles.
"""

import copy
import threading
from typing import Callable, Dict, Generic, List, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

P = TypeVar("P")


class ProfileRegistry(Generic[P]):
    """
    Profiles keyed by id, last write wins.

    Readers get copies, so a later ``register`` never shows through a
    profile a caller already holds.
    """

    def __init__(self, name: str, key: Callable[[P], str]):
        self.name = name
        self._key = key
        self._profiles: Dict[str, P] = {}
        self._lock = threading.RLock()

    def register(self, profile: P) -> None:
        key = self._key(profile)
        with self._lock:
            replaced = key in self._profiles
            self._profiles[key] = copy.deepcopy(profile)
        logger.info(f"{'Updated' if replaced else 'Registered'} {self.name} profile: {key}")

    def get(self, key: str) -> Optional[P]:
        with self._lock:
            profile = self._profiles.get(key)
            return copy.deepcopy(profile) if profile is not None else None

    def remove(self, key: str) -> bool:
        with self._lock:
            removed = self._profiles.pop(key, None) is not None
        if removed:
            logger.info(f"Removed {self.name} profile: {key}")
        return removed

    def list(self) -> List[P]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._profiles.values()]

    def find(self, predicate: Callable[[P], bool]) -> Optional[P]:
        with self._lock:
            for profile in self._profiles.values():
                if predicate(profile):
                    return copy.deepcopy(profile)
        return None

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._profiles

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)
