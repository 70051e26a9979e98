"""Host name helpers, file change tracking and a keyed semaphore."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field

_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)
_UUID_CHARS = frozenset("0123456789abcdef-")
_MAC_CHARS = frozenset("0123456789ABCDEF_")
_DASHED_IP_CHARS = frozenset("0123456789-")


def is_valid_name(name: str) -> bool:
    """Return False for empty names and for machine-generated identifiers."""
    if name in ("", "*"):
        return False
    # e.g. 331e87e5-3018-5336-23f3-595cdea48d9b
    if (
        len(name) == 36
        and all(name[i] == "-" for i in (8, 13, 18, 23))
        and set(name) <= _UUID_CHARS
    ):
        return False
    # e.g. CC_22_3D_E4_CE_FE
    if (
        len(name) == 17
        and all(name[i] == "_" for i in (2, 5, 8, 11, 14))
        and set(name) <= _MAC_CHARS
    ):
        return False
    # e.g. 10-0-0-213
    if 7 <= len(name) <= 15 and set(name) <= _DASHED_IP_CHARS:
        return False
    return True


def lower_ascii(s: str) -> str:
    """Lower-case ASCII letters only, leaving every other character as is."""
    return s.translate(_ASCII_LOWER)


def abs_domain_name(name: str) -> str:
    """Return name with a trailing dot."""
    if not name.endswith("."):
        return name + "."
    return name


def prepare_host_lookup(host: str) -> str:
    """Normalise a host name into the key used by the name tables."""
    return abs_domain_name(lower_ascii(host))


def append_uniq(items: list, *args) -> list:
    """Append each of args to items unless already present; return items."""
    for value in args:
        if value not in items:
            items.append(value)
    return items


@dataclass(frozen=True)
class FileInfo:
    """Identity of a file's content as seen by its path, mtime and size."""

    path: str
    mtime_ns: int
    size: int

    def matches(self, path: str) -> bool:
        """True if path is this file and it has not changed since."""
        if self.path != path:
            return False
        try:
            current = get_file_info(path)
        except OSError:
            return False
        return current.mtime_ns == self.mtime_ns and current.size == self.size


def get_file_info(path: str) -> FileInfo:
    """Stat path; raises OSError if it cannot be stat'ed."""
    st = os.stat(path)
    return FileInfo(path=path, mtime_ns=st.st_mtime_ns, size=st.st_size)


@dataclass
class SemaphoreMap:
    """A set of keys that can each be held by one caller at a time."""

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _acquired: set = field(default_factory=set, init=False, repr=False)

    def acquire(self, key: str) -> bool:
        """Take key; return False if it is already held."""
        with self._lock:
            if key in self._acquired:
                return False
            self._acquired.add(key)
            return True

    def release(self, key: str) -> None:
        """Give key back. Releasing a key not held does nothing."""
        with self._lock:
            self._acquired.discard(key)