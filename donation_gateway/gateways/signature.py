"""
Signature codecs for the two gateways.

ECPay signs plain form fields with a keyed SHA-256 ("CheckMacValue"):

  1. Drop the CheckMacValue field itself
  2. Sort the remaining pairs by key, case-insensitively
  3. Join as key=value with "&"
  4. Wrap as HashKey=<key>&...&HashIV=<iv>
  5. URL-encode the whole string (space → "+")
  6. Lowercase
  7. Restore - _ . ! * ( ) to literal characters; the processor's
     reference encoder (.NET UrlEncode) leaves them unescaped
  8. SHA-256, uppercase hex

Newebpay instead ships an AES-256-CBC encrypted query string/JSON blob
("TradeInfo") and signs the ciphertext hex ("TradeSha").

Neither codec ever logs key material.
"""

import hashlib
import hmac
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional
from urllib.parse import quote_plus

from Crypto.Cipher import AES

logger = logging.getLogger("donation_gateway.signature")

CHECK_MAC_FIELD = "CheckMacValue"

# Percent-encodings the processor's encoder leaves as literals.
DOTNET_URLENCODE_EXCEPTIONS = (
    ("%2d", "-"),
    ("%5f", "_"),
    ("%2e", "."),
    ("%21", "!"),
    ("%2a", "*"),
    ("%28", "("),
    ("%29", ")"),
)

# AES-256 key length; TradeInfo padding is applied to this block size.
TRADE_INFO_BLOCK_SIZE = 32


def canonicalize(params: Mapping[str, Any], exclude: Iterable[str] = (CHECK_MAC_FIELD,)) -> str:
    """Deterministic key=value&... string, keys sorted case-insensitively."""
    excluded = set(exclude)
    pairs = sorted(
        ((str(k), "" if v is None else str(v)) for k, v in params.items() if k not in excluded),
        key=lambda kv: kv[0].lower(),
    )
    return "&".join(f"{k}={v}" for k, v in pairs)


def _compare(calculated: str, received: str) -> bool:
    return hmac.compare_digest(calculated.encode("utf-8"), received.upper().encode("utf-8"))


class CheckMacCodec:
    """Keyed SHA-256 over canonicalized plain fields."""

    def __init__(self, hash_key: str, hash_iv: str):
        self._hash_key = hash_key
        self._hash_iv = hash_iv

    def encode(self, canonical: str) -> str:
        raw = f"HashKey={self._hash_key}&{canonical}&HashIV={self._hash_iv}"
        encoded = quote_plus(raw, safe="").lower()
        for escaped, literal in DOTNET_URLENCODE_EXCEPTIONS:
            encoded = encoded.replace(escaped, literal)
        return encoded

    def sign(self, canonical: str) -> str:
        return hashlib.sha256(self.encode(canonical).encode("utf-8")).hexdigest().upper()

    def sign_params(self, params: Mapping[str, Any]) -> str:
        return self.sign(canonicalize(params))

    def verify(
        self,
        params: Mapping[str, Any],
        provided: Optional[str] = None,
        exclude: Iterable[str] = (),
    ) -> bool:
        """
        Recompute CheckMacValue over an inbound payload and compare.

        Blank-valued fields and any extra excluded keys are left out of the
        computation. A missing signature is a failed verification, not an
        error.
        """
        received = provided if provided is not None else params.get(CHECK_MAC_FIELD)
        if not received:
            logger.warning("CheckMacValue missing from callback")
            return False

        excluded = {CHECK_MAC_FIELD, *exclude}
        callback_params = {
            k: v for k, v in params.items()
            if k not in excluded and v is not None and str(v).strip() != ""
        }
        calculated = self.sign_params(callback_params)

        logger.info("Callback params keys: %s", ", ".join(sorted(callback_params)))
        logger.info("Received MAC: %s", received)
        logger.info("Calculated MAC: %s", calculated)

        result = _compare(calculated, str(received))
        logger.info("MAC verification result: %s", result)
        return result


class TradeInfoCipher:
    """
    AES-256-CBC for TradeInfo payloads, plus the TradeSha signature.

    Padding is PKCS#7-style but to a 32-byte block (the key length), applied
    by hand with the cipher's own padding disabled. Decryption trusts the
    trailing byte as the pad length, as the processor's reference code does,
    so standard 16-byte padded responses decrypt too.
    """

    def __init__(self, hash_key: str, hash_iv: str):
        self._hash_key = hash_key
        self._hash_iv = hash_iv
        self._key = hash_key.encode("utf-8")
        self._iv = hash_iv.encode("utf-8")

    def _cipher(self):
        return AES.new(self._key, AES.MODE_CBC, iv=self._iv)

    @staticmethod
    def pad(data: bytes) -> bytes:
        pad_length = TRADE_INFO_BLOCK_SIZE - (len(data) % TRADE_INFO_BLOCK_SIZE)
        return data + bytes([pad_length]) * pad_length

    @staticmethod
    def unpad(data: bytes) -> bytes:
        if not data:
            raise ValueError("Cannot unpad empty data")
        pad_length = data[-1]
        if pad_length < 1 or pad_length > TRADE_INFO_BLOCK_SIZE or pad_length > len(data):
            raise ValueError(f"Invalid padding length: {pad_length}")
        return data[:-pad_length]

    def encrypt(self, plaintext: str) -> str:
        encrypted = self._cipher().encrypt(self.pad(plaintext.encode("utf-8")))
        return encrypted.hex()

    def decrypt(self, ciphertext_hex: str) -> str:
        """
        Raises:
            ValueError: Malformed hex, wrong block alignment or bad padding.
        """
        encrypted = bytes.fromhex(ciphertext_hex.strip())
        decrypted = self._cipher().decrypt(encrypted)
        return self.unpad(decrypted).decode("utf-8")

    def sign(self, ciphertext_hex: str) -> str:
        raw = f"HashKey={self._hash_key}&{ciphertext_hex}&HashIV={self._hash_iv}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest().upper()

    def verify(self, ciphertext_hex: Optional[str], provided: Optional[str]) -> bool:
        if not ciphertext_hex or not provided:
            logger.warning("TradeInfo or TradeSha missing from callback")
            return False

        calculated = self.sign(ciphertext_hex)
        logger.info("Received TradeSha: %s", provided)
        logger.info("Calculated TradeSha: %s", calculated)

        result = _compare(calculated, provided)
        logger.info("TradeSha verification result: %s", result)
        return result
