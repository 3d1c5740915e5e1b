from __future__ import annotations

import re

from solders.keypair import Keypair
from solders.pubkey import Pubkey

# A 64-byte secret encodes to between 64 (all zero bytes) and 88 base58 characters.
_KEYPAIR_BASE58 = re.compile(r"[1-9A-HJ-NP-Za-km-z]{64,88}")


class KeyDecodeError(ValueError):
    pass


def decode_keypair(private_key: str) -> Keypair:
    raw = private_key.strip()
    if not raw:
        raise KeyDecodeError("Private key cannot be blank")
    if not _KEYPAIR_BASE58.fullmatch(raw):
        raise KeyDecodeError(f"Private key is not a base58 encoded 64-byte keypair ({len(raw)} characters)")
    try:
        return Keypair.from_base58_string(raw)
    except ValueError as exc:
        raise KeyDecodeError(f"Invalid keypair: {exc}") from exc


def decode_pubkey(address: str, *, label: str = "address") -> Pubkey:
    raw = address.strip()
    if not raw:
        raise KeyDecodeError(f"{label} cannot be blank")
    try:
        return Pubkey.from_string(raw)
    except ValueError as exc:
        raise KeyDecodeError(f"Invalid {label}: {raw}") from exc
