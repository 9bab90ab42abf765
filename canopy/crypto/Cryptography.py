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

import os

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from canopy.Kernel import getLogger
from canopy.crypto import CryptoBackend

logger = getLogger(__name__)

ECIES_INFO = b'canopy-ecies-v1'
ECIES_NONCE_SIZE = 12
ECIES_POINT_SIZE = 65 # uncompressed secp256k1 point
GCM_TAG_SIZE = 16


class CryptographyBackend(CryptoBackend):
    """Cryptography library backend implementation"""

    def __init__(self):
        self.curve = ec.SECP256K1()

    def getName(self):
        return "cryptography"

    def randomBytes(self, length):
        return os.urandom(length)

    def createAESGCM(self, key):
        """Create a reusable AES-GCM cipher object"""
        return AESGCM(key)

    def encryptAESGCM(self, keyOrCipher, plaintext, nonce=None, aad=None):
        """Encrypt with AES-GCM, returns (nonce, ciphertext+tag) tuple"""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        # Accept either a key (bytes) or pre-created cipher object (AESGCM instance)
        aesgcm = keyOrCipher if isinstance(keyOrCipher, AESGCM) else AESGCM(keyOrCipher)

        if nonce is None:
            nonce = os.urandom(12) # 96-bit nonce for GCM

        return (nonce, aesgcm.encrypt(nonce, plaintext, aad))

    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        """Decrypt with AES-GCM, returns plaintext"""
        aesgcm = keyOrCipher if isinstance(keyOrCipher, AESGCM) else AESGCM(keyOrCipher)
        return aesgcm.decrypt(nonce, ciphertextWithTag, aad)

    def deriveKey(self, keyMaterial, length=32, info=b'', salt=None):
        """Derive key using HKDF with SHA-256"""
        if isinstance(keyMaterial, str):
            keyMaterial = keyMaterial.encode('utf-8')
        if isinstance(salt, str):
            salt = salt.encode('utf-8')

        hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info)
        return hkdf.derive(keyMaterial)

    def _loadPrivateKey(self, privateKeyHex):
        return ec.derive_private_key(int(privateKeyHex, 16), self.curve)

    def _loadPublicKey(self, publicKeyBytes):
        return ec.EllipticCurvePublicKey.from_encoded_point(self.curve, publicKeyBytes)

    def generateKeyPair(self):
        """Generate a secp256k1 key pair as (32-byte private scalar hex, compressed point hex)"""
        privateKey = ec.generate_private_key(self.curve)
        privateKeyHex = privateKey.private_numbers().private_value.to_bytes(32, 'big').hex()
        return (privateKeyHex, self.derivePublicKeyFromPrivate(privateKeyHex))

    def derivePublicKeyFromPrivate(self, privateKeyHex):
        publicKey = self._loadPrivateKey(privateKeyHex).public_key()
        return publicKey.public_bytes(
            encoding=serialization.Encoding.X962, format=serialization.PublicFormat.CompressedPoint
        ).hex()

    def encryptWithPublicKey(self, data, publicKeyHex):
        """Encrypt data using ECIES with an ephemeral key

        Format: ephemeralPublic(65, uncompressed) || nonce(12) || ciphertext+tag, hex encoded.
        """
        recipientKey = self._loadPublicKey(bytes.fromhex(publicKeyHex))

        ephemeralPrivateKey = ec.generate_private_key(self.curve)
        ephemeralPublic = ephemeralPrivateKey.public_key().public_bytes(
            encoding=serialization.Encoding.X962, format=serialization.PublicFormat.UncompressedPoint
        )

        # ECDH: ephemeralPrivate * recipientPublic, bound to the ephemeral key
        sharedSecret = ephemeralPrivateKey.exchange(ec.ECDH(), recipientKey)
        encryptionKey = self.deriveKey(ephemeralPublic + sharedSecret, length=32, info=ECIES_INFO)

        nonce, ciphertext = self.encryptAESGCM(encryptionKey, data, os.urandom(ECIES_NONCE_SIZE))

        return (ephemeralPublic + nonce + ciphertext).hex()

    def decryptWithPrivateKey(self, privateKeyHex, encryptedHex):
        """Decrypt ECIES data produced by encryptWithPublicKey()

        Raises:
            ValueError: If the payload is not hex or too short to hold a point, nonce and tag
            cryptography.exceptions.InvalidTag: If the payload was not encrypted for this key
        """
        encrypted = bytes.fromhex(encryptedHex)
        if len(encrypted) < ECIES_POINT_SIZE + ECIES_NONCE_SIZE + GCM_TAG_SIZE:
            raise ValueError(f"ECIES payload too short: {len(encrypted)} bytes")

        ephemeralPublic = encrypted[:ECIES_POINT_SIZE]
        nonce = encrypted[ECIES_POINT_SIZE:ECIES_POINT_SIZE + ECIES_NONCE_SIZE]
        ciphertext = encrypted[ECIES_POINT_SIZE + ECIES_NONCE_SIZE:]

        sharedSecret = self._loadPrivateKey(privateKeyHex).exchange(ec.ECDH(), self._loadPublicKey(ephemeralPublic))
        encryptionKey = self.deriveKey(ephemeralPublic + sharedSecret, length=32, info=ECIES_INFO)

        return self.decryptAESGCM(encryptionKey, nonce, ciphertext)
