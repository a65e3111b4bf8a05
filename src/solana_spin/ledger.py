from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import List, Optional

from .events import DrawEvent, DrawsState, derive_state

log = logging.getLogger("ledger")


class LedgerError(RuntimeError):
    pass


class LedgerWriteError(LedgerError):
    """An append could not be made durable. Remaining cycle side effects must stop."""


class LedgerReadError(LedgerError):
    """The history exists but cannot be parsed; paying from it could double-pay."""


class LedgerStore:
    """
    Append-only list of draw events in a single JSON file.

    Appends read the full file, add the event in memory and atomically replace
    the file, so a crash mid-write leaves the previous content intact.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _read(self) -> List[DrawEvent]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"ledger {self.path} is not a JSON array")
        return data

    def all(self, strict: bool = False) -> List[DrawEvent]:
        """
        Every recorded event in append order. An unreadable file reads as an
        empty history unless ``strict``, in which case LedgerReadError is raised.
        """
        try:
            return self._read()
        except (OSError, ValueError) as e:
            if strict:
                raise LedgerReadError(f"Ledger {self.path} is unreadable: {e}")
            log.warning("Ledger unreadable (%s); treating as empty history.", e)
            return []

    def append(self, event: DrawEvent) -> None:
        try:
            draws = self._read()
        except (OSError, ValueError) as e:
            # Never overwrite a history we cannot read.
            raise LedgerWriteError(f"Refusing to append to unreadable ledger {self.path}: {e}")
        draws.append(event)
        self._write(draws)
        log.debug("Appended %s event (ledger size %d).", event.get("kind"), len(draws))

    def _write(self, draws: List[DrawEvent]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".draws-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(draws, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise LedgerWriteError(f"Failed to write ledger {self.path}: {e}")

    def state(
        self,
        bonus_cap: Optional[float] = None,
        bonus_amount: Optional[float] = None,
        strict: bool = False,
    ) -> DrawsState:
        return derive_state(self.all(strict=strict), bonus_cap=bonus_cap, bonus_amount=bonus_amount)
