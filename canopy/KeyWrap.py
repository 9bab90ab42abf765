#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# Canopy - Encrypted folder trees for content-addressed storage
# Copyright (C) 2025-2026 Canopy contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Key wrapping for sharing.

A file's iv and key are encrypted separately under a recipient's public key and joined
as text:

    "<hex(asymEncrypt(iv))>|<hex(asymEncrypt(rawKey))>"

The asymmetric primitive belongs to the key holder (KeyHolder, or any AsymmetricProvider);
this module only defines the joined format.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from cryptography.exceptions import InvalidTag

from canopy.Envelope import KeyMaterial, exportKey, importKey
from canopy.Kernel import getLogger
from canopy.Settings import WRAP_DELIMITER
from canopy.crypto import CryptoFailure, CryptoInterface

logger = getLogger(__name__)


class GrantError(Exception):
    """Base class for access-grant failures"""


class MissingGrant(GrantError, PermissionError):
    """An account holds no grant on the item it tries to open."""

    def __init__(self, address, item):
        super().__init__(f"{address} holds no grant on {item}")
        self.address = address
        self.item = item


class MalformedGrant(GrantError):
    """A wrapped key string that cannot be unwrapped.

    Attributes:
        halves: Names of the halves ('iv', 'key') that failed, empty when the string itself is malformed
    """

    def __init__(self, message, halves: Tuple[str, ...] = ()):
        super().__init__(message)
        self.halves = tuple(halves)


class AsymmetricProvider(ABC):
    """Holder of an asymmetric keypair"""

    @abstractmethod
    def asymmetricEncrypt(self, data: bytes, publicKeyHex: str) -> str:
        """Encrypt data for the owner of publicKeyHex, returns hex string"""
        pass

    @abstractmethod
    def asymmetricDecrypt(self, encryptedHex: str) -> bytes:
        """Decrypt hex string with this holder's private key"""
        pass


class KeyHolder(AsymmetricProvider):
    """secp256k1 keypair owner performing ECIES through a CryptoInterface."""

    def __init__(self, privateKeyHex: str, crypto: Optional[CryptoInterface] = None):
        self.crypto = crypto or CryptoInterface()
        self._privateKeyHex = privateKeyHex
        self.publicKeyHex = self.crypto.derivePublicKeyFromPrivate(privateKeyHex)

    @classmethod
    def generate(cls, crypto: Optional[CryptoInterface] = None) -> "KeyHolder":
        crypto = crypto or CryptoInterface()
        privateKeyHex, _ = crypto.generateKeyPair()
        return cls(privateKeyHex, crypto)

    def __repr__(self):
        return f"KeyHolder(publicKeyHex={self.publicKeyHex!r})"

    def asymmetricEncrypt(self, data: bytes, publicKeyHex: str) -> str:
        try:
            return self.crypto.encryptWithPublicKey(data, publicKeyHex)
        except ValueError as e:
            raise CryptoFailure('encrypt', f"asymmetricEncrypt failed: {e}") from e

    def asymmetricDecrypt(self, encryptedHex: str) -> bytes:
        try:
            return self.crypto.decryptWithPrivateKey(self._privateKeyHex, encryptedHex)
        except (InvalidTag, ValueError) as e:
            raise CryptoFailure('decrypt', f"asymmetricDecrypt failed: {str(e) or type(e).__name__}") from e


def wrapForRecipient(
    iv: bytes, keyBytes: bytes, recipientPublicKey: str, asymmetricEncrypt: Callable[[bytes, str], str]
) -> str:
    """Wrap an iv and raw key for one recipient.

    Args:
        iv: Initialization vector
        keyBytes: Exported symmetric key
        recipientPublicKey: Recipient's public key hex
        asymmetricEncrypt: (data, publicKey) -> hex string

    Returns:
        "<wrapped-iv-hex>|<wrapped-key-hex>"
    """
    wrappedIv = asymmetricEncrypt(iv, recipientPublicKey)
    wrappedKey = asymmetricEncrypt(keyBytes, recipientPublicKey)
    return f"{wrappedIv}{WRAP_DELIMITER}{wrappedKey}"


def wrapKeyMaterial(material: KeyMaterial, recipientPublicKey: str, provider: AsymmetricProvider) -> str:
    return wrapForRecipient(material.iv, exportKey(material.key), recipientPublicKey, provider.asymmetricEncrypt)


def wrapForAccount(address: str, material: KeyMaterial, provider: AsymmetricProvider, directory) -> str:
    """Wrap key material for the public key registered to address.

    Raises:
        UnregisteredRecipient: If the directory has no key for address
    """
    publicKey = directory.requirePublicKey(address)
    return wrapKeyMaterial(material, publicKey, provider)


def _unwrapHalf(wrappedHex, asymmetricDecrypt):
    try:
        return asymmetricDecrypt(wrappedHex)
    except (CryptoFailure, ValueError) as e:
        logger.debug(f"[KEYWRAP] Failed to unwrap half: {e}")
        return None


def unwrapFromSelf(wrapped: str, asymmetricDecrypt: Callable[[str], bytes]) -> KeyMaterial:
    """Recover key material wrapped for the holder of asymmetricDecrypt.

    Both halves are attempted so a failure names every half that could not be recovered.

    Raises:
        MalformedGrant: If the delimiter is missing or either half fails to decrypt or import
    """
    if WRAP_DELIMITER not in wrapped:
        raise MalformedGrant(f"Wrapped key has no '{WRAP_DELIMITER}' delimiter")

    wrappedIv, wrappedKey = wrapped.split(WRAP_DELIMITER, 1)
    iv = _unwrapHalf(wrappedIv, asymmetricDecrypt)
    rawKey = _unwrapHalf(wrappedKey, asymmetricDecrypt)

    failed = tuple(name for name, value in (('iv', iv), ('key', rawKey)) if value is None)
    if failed:
        raise MalformedGrant(f"Could not decrypt wrapped {' and '.join(failed)}", failed)

    try:
        key = importKey(rawKey)
    except ValueError as e:
        raise MalformedGrant(f"Unwrapped key is unusable: {e}", ('key',)) from e

    return KeyMaterial(key=key, iv=iv)
