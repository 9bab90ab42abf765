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

from abc import ABC, abstractmethod

from canopy.Kernel import classForName, getLogger

logger = getLogger(__name__)


class CryptoFailure(Exception):
    """A cipher rejected its input: wrong key, wrong iv, or tampered ciphertext.

    Attributes:
        direction: 'encrypt' or 'decrypt'
    """

    def __init__(self, direction, message=None):
        super().__init__(message or f'{direction} failed')
        self.direction = direction


class CryptoBackend(ABC):
    """Abstract base class for cryptographic backends"""

    @abstractmethod
    def getName(self):
        """Get backend name"""
        pass

    @abstractmethod
    def randomBytes(self, length):
        """Return length cryptographically random bytes"""
        pass

    @abstractmethod
    def createAESGCM(self, key):
        """Create a reusable AES-GCM cipher object"""
        pass

    @abstractmethod
    def encryptAESGCM(self, keyOrCipher, plaintext, nonce=None, aad=None):
        """Encrypt with AES-GCM, returns (nonce, ciphertext+tag) tuple"""
        pass

    @abstractmethod
    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        """Decrypt with AES-GCM, returns plaintext"""
        pass

    @abstractmethod
    def deriveKey(self, keyMaterial, length=32, info=b'', salt=None):
        """Derive key using HKDF, returns bytes"""
        pass

    @abstractmethod
    def generateKeyPair(self):
        """Generate secp256k1 key pair, returns (privateKeyHex, publicKeyHex)"""
        pass

    @abstractmethod
    def derivePublicKeyFromPrivate(self, privateKeyHex):
        """Derive the compressed public key hex from a private key hex"""
        pass

    @abstractmethod
    def encryptWithPublicKey(self, data, publicKeyHex):
        """Encrypt data using ECIES with a secp256k1 public key, returns hex string"""
        pass

    @abstractmethod
    def decryptWithPrivateKey(self, privateKeyHex, encryptedHex):
        """Decrypt ECIES hex string with a secp256k1 private key, returns bytes"""
        pass


class CryptoInterface:
    """Crypto capability handed to codecs and key wrappers.

    Accepts either a backend name or a ready CryptoBackend instance, so callers (and tests)
    can substitute deterministic implementations.
    """

    BACKENDS = ['cryptography']

    def __init__(self, preferredBackend=None):
        if isinstance(preferredBackend, CryptoBackend):
            self.backend = preferredBackend
        else:
            self.backend = self._initializeBackend(preferredBackend)

    def _initializeBackend(self, preferredBackend=None):
        """Initialize crypto backend with fallback priority"""
        backendList = list(self.BACKENDS)

        # If specific backend requested, try that first
        if preferredBackend in backendList:
            backendList.remove(preferredBackend)
            backendList.insert(0, preferredBackend)

        for backendName in backendList:
            try:
                backendModule = f'{backendName[0].upper()}{backendName[1:]}'
                backendClass = classForName(f'canopy.crypto.{backendModule}.{backendModule}Backend')
                return backendClass()
            except ImportError as e:
                logger.debug(f"[CRYPTO] Failed to load crypto backend {backendName}: {e}")
                continue

        raise RuntimeError("No crypto backend available - please install 'cryptography'")

    def getBackendName(self):
        """Get current backend name"""
        return self.backend.getName()

    def __getattr__(self, name):
        # Delegate any undefined method to backend
        return getattr(self.backend, name)
