from __future__ import annotations

import json
import logging
import os
from typing import List

import base58

log = logging.getLogger("registry")


def is_valid_address(value: object) -> bool:
    """A Solana address is the base58 encoding of a 32-byte public key."""
    if not isinstance(value, str) or not value:
        return False
    try:
        raw = base58.b58decode(value)
    except ValueError:
        return False
    return len(raw) == 32


class RegistryStore:
    """Ordered, duplicate-free list of participant wallets kept as a JSON array."""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Registry unreadable (%s); treating as empty.", e)
            return []
        if not isinstance(data, list):
            log.warning("Registry %s is not a JSON array; treating as empty.", self.path)
            return []
        return [str(w) for w in data]

    def contains(self, address: str) -> bool:
        return address in self.load()

    def add(self, address: str) -> bool:
        if not is_valid_address(address):
            raise ValueError(f"Not a valid Solana address: {address!r}")
        wallets = self.load()
        if address in wallets:
            return False
        wallets.append(address)
        self._save(wallets)
        return True

    def remove(self, address: str) -> bool:
        wallets = self.load()
        if address not in wallets:
            return False
        wallets.remove(address)
        self._save(wallets)
        return True

    def _save(self, wallets: List[str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(wallets, f, indent=2)
        os.replace(tmp_path, self.path)
