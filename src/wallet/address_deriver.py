"""
Address Deriver

Deterministic, one-way mapping (phrase, currency) -> display address.

This is a simulation: SHA-256(phrase + currency) formatted per currency.
It is NOT BIP32/BIP44 derivation and the resulting addresses do not
correspond to any key pair.

Formats:
- ETH: "0x" + first 40 hex chars of the digest
- BTC: "1" + 33 base58-alphabet chars
- SOL: 44 base58-alphabet chars
"""

import hashlib

from src.errors import ValidationError

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _digest(phrase: str, currency: str) -> bytes:
    return hashlib.sha256(f"{phrase}{currency}".encode("utf-8")).digest()


def _base58_map(digest: bytes, length: int) -> str:
    # Cycle over digest bytes when the address is longer than the digest
    return "".join(
        BASE58_ALPHABET[digest[i % len(digest)] % len(BASE58_ALPHABET)]
        for i in range(length)
    )


def _eth(digest: bytes) -> str:
    return "0x" + digest.hex()[:40]


def _btc(digest: bytes) -> str:
    return "1" + _base58_map(digest, 33)


def _sol(digest: bytes) -> str:
    return _base58_map(digest, 44)


_FORMATTERS = {
    "ETH": _eth,
    "BTC": _btc,
    "SOL": _sol,
}


class AddressDeriver:
    """
    Usage:
        deriver = AddressDeriver()
        addr = deriver.derive("abandon ability ...", "ETH")
    """

    @property
    def currencies(self):
        return tuple(_FORMATTERS)

    def derive(self, phrase: str, currency: str) -> str:
        currency = currency.upper()
        formatter = _FORMATTERS.get(currency)
        if formatter is None:
            raise ValidationError(f"Unsupported currency: {currency}")
        return formatter(_digest(phrase, currency))
