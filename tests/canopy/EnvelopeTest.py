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
Unit tests for the symmetric envelope codec: buffer crypt, string crypt, and the framed
file envelope format.
"""

import json
import math
import os
import tempfile
import unittest

from unittest.mock import MagicMock

from canopy.Envelope import (
    CryptMode, EnvelopeCodec, EnvelopeFormatError, FileDetails, IvPolicy, KeyMaterial, PlainFile, SymmetricKey,
    exportKey, importKey
)
from canopy.Hashing import hashAndHex
from canopy.Settings import ENCRYPTION_CHUNK_SIZE, LENGTH_HEADER_WIDTH
from canopy.crypto import CryptoFailure, CryptoInterface
from canopy.crypto.Cryptography import CryptographyBackend

ONE_MIB = 1024 * 1024


class CountingBackend(CryptographyBackend):
    """Backend with predictable randomness"""

    def __init__(self):
        super().__init__()
        self.counter = 0

    def randomBytes(self, length):
        self.counter += 1
        return bytes([self.counter % 256]) * length


class CryptTest(unittest.TestCase):

    def setUp(self):
        self.codec = EnvelopeCodec()
        self.key = self.codec.generateKey()
        self.iv = self.codec.generateIv()

    def testGeneratedSizes(self):
        self.assertEqual(len(self.key.raw), 32)
        self.assertEqual(len(self.iv), 16)
        self.assertNotEqual(self.codec.generateKey(), self.key)
        self.assertNotEqual(self.codec.generateIv(), self.iv)

    def testRoundTrip(self):
        for size in (1, 15, 16, 17, 1000, ONE_MIB):
            with self.subTest(size=size):
                data = os.urandom(size)
                encrypted = self.codec.crypt(data, self.key, self.iv, CryptMode.ENCRYPT)
                self.assertNotEqual(encrypted, data)
                self.assertEqual(len(encrypted), size + 16) # GCM tag
                self.assertEqual(self.codec.crypt(encrypted, self.key, self.iv, CryptMode.DECRYPT), data)

    def testModeAcceptsStrings(self):
        encrypted = self.codec.crypt(b'hello', self.key, self.iv, 'encrypt')
        self.assertEqual(self.codec.crypt(encrypted, self.key, self.iv, 'DECRYPT'), b'hello')

    def testInvalidMode(self):
        with self.assertRaises(ValueError):
            self.codec.crypt(b'hello', self.key, self.iv, 'scramble')

    def testEmptyBufferSkipsCipher(self):
        """Empty input returns empty output in both directions without touching the cipher."""
        crypto = MagicMock()
        codec = EnvelopeCodec(crypto)

        self.assertEqual(codec.crypt(b'', self.key, self.iv, CryptMode.ENCRYPT), b'')
        self.assertEqual(codec.crypt(b'', self.key, self.iv, CryptMode.DECRYPT), b'')

        crypto.createAESGCM.assert_not_called()
        crypto.encryptAESGCM.assert_not_called()
        crypto.decryptAESGCM.assert_not_called()

    def testTamperDetection(self):
        """Flipping any single bit of the ciphertext must fail authentication."""
        encrypted = self.codec.crypt(b'attack at dawn', self.key, self.iv, CryptMode.ENCRYPT)

        for bit in range(len(encrypted) * 8):
            tampered = bytearray(encrypted)
            tampered[bit // 8] ^= 1 << (bit % 8)
            with self.subTest(bit=bit):
                with self.assertRaises(CryptoFailure) as ctx:
                    self.codec.crypt(bytes(tampered), self.key, self.iv, CryptMode.DECRYPT)
                self.assertEqual(ctx.exception.direction, 'decrypt')

    def testWrongKeyOrIv(self):
        encrypted = self.codec.crypt(b'secret', self.key, self.iv, CryptMode.ENCRYPT)

        with self.assertRaises(CryptoFailure):
            self.codec.crypt(encrypted, self.codec.generateKey(), self.iv, CryptMode.DECRYPT)

        with self.assertRaises(CryptoFailure):
            self.codec.crypt(encrypted, self.key, self.codec.generateIv(), CryptMode.DECRYPT)

    def testUnusableIvReportsDirection(self):
        with self.assertRaises(CryptoFailure) as ctx:
            self.codec.crypt(b'secret', self.key, b'', CryptMode.ENCRYPT)
        self.assertEqual(ctx.exception.direction, 'encrypt')

    def testCryptText(self):
        encrypted = self.codec.cryptText('héllo wörld', self.key, self.iv, CryptMode.ENCRYPT)
        self.assertRegex(encrypted, r'^[A-Za-z0-9+/=]+$')
        self.assertEqual(self.codec.cryptText(encrypted, self.key, self.iv, CryptMode.DECRYPT), 'héllo wörld')

    def testCryptTextEmpty(self):
        self.assertEqual(self.codec.cryptText('', self.key, self.iv, CryptMode.ENCRYPT), '')
        self.assertEqual(self.codec.cryptText('', self.key, self.iv, CryptMode.DECRYPT), '')

    def testCryptTextRejectsNonBase64(self):
        with self.assertRaises(CryptoFailure):
            self.codec.cryptText('not base64!', self.key, self.iv, CryptMode.DECRYPT)


class KeyTest(unittest.TestCase):

    def testExportImport(self):
        key = EnvelopeCodec().generateKey()
        raw = exportKey(key)

        self.assertIsInstance(raw, bytes)
        self.assertEqual(len(raw), 32)
        self.assertEqual(importKey(raw), key)

    def testImportRejectsWrongLength(self):
        with self.assertRaises(ValueError):
            importKey(b'x' * 16)

    def testKeyBytesHiddenFromRepr(self):
        key = SymmetricKey(b'\x01' * 32)
        material = KeyMaterial(key=key, iv=b'\x02' * 16)
        self.assertNotIn(repr(b'\x01' * 32), repr(material))
        self.assertNotIn(repr(b'\x02' * 16), repr(material))

    def testInjectedBackendIsUsed(self):
        codec = EnvelopeCodec(CryptoInterface(CountingBackend()))

        self.assertEqual(codec.generateKey().raw, b'\x01' * 32)
        self.assertEqual(codec.generateIv(), b'\x02' * 16)


class EnvelopeTest(unittest.TestCase):

    def setUp(self):
        self.codec = EnvelopeCodec(clock=lambda: 1700000000.5)
        self.key = self.codec.generateKey()
        self.iv = self.codec.generateIv()

    def _makeFile(self, size, name='report.pdf'):
        return PlainFile(name=name, content=os.urandom(size), lastModified=1699999999000, type='application/pdf')

    def testRoundTripBoundarySizes(self):
        """Metadata and content survive encoding at the chunk boundaries."""
        chunk = ENCRYPTION_CHUNK_SIZE
        for size in (0, 1, chunk, chunk + 1):
            with self.subTest(size=size):
                original = self._makeFile(size)
                encrypted = self.codec.encodeFile(original, self.key, self.iv)

                expectedFrames = math.ceil(size / chunk) + 1
                self.assertEqual(encrypted.frameCount, expectedFrames)
                self.assertEqual(len(list(self.codec.iterFrames(encrypted.data))), expectedFrames)

                decoded = self.codec.decodeFile(encrypted.data, self.key, self.iv)
                self.assertEqual(decoded.size, size)
                self.assertEqual(decoded.type, original.type)
                self.assertEqual(decoded.name, original.name)
                self.assertEqual(decoded.lastModified, original.lastModified)
                self.assertEqual(decoded.content, original.content)

    def testEmptyFileHasOnlyMetadataFrame(self):
        original = self._makeFile(0)
        encrypted = self.codec.encodeFile(original, self.key, self.iv)

        frames = list(self.codec.iterFrames(encrypted.data))
        self.assertEqual(len(frames), 1)

        metadata = self.codec.crypt(frames[0].ciphertext, self.key, self.codec.frameIv(self.iv, 0), 'decrypt')
        self.assertEqual(
            json.loads(metadata), {
                'name': 'report.pdf',
                'lastModified': 1699999999000,
                'type': 'application/pdf',
                'size': 0
            }
        )

        decoded = self.codec.decodeFile(encrypted.data, self.key, self.iv)
        self.assertEqual(decoded.size, 0)
        self.assertEqual(decoded.details, original.details)

    def testLengthHeaderCountsItself(self):
        codec = EnvelopeCodec(chunkSize=10)
        encrypted = codec.encodeFile(self._makeFile(25), self.key, self.iv)

        offset = 0
        for frame in codec.iterFrames(encrypted.data):
            header = encrypted.data[offset:offset + LENGTH_HEADER_WIDTH]
            self.assertRegex(header.decode('ascii'), r'^\d{8}$')
            self.assertEqual(int(header), len(frame.ciphertext) + LENGTH_HEADER_WIDTH)
            self.assertEqual(frame.offset, offset)
            offset += int(header)

        self.assertEqual(offset, len(encrypted.data))

    def testContentFrameSizes(self):
        codec = EnvelopeCodec(chunkSize=10)
        encrypted = codec.encodeFile(self._makeFile(25), self.key, self.iv)

        frames = list(codec.iterFrames(encrypted.data))
        self.assertEqual([len(f.ciphertext) - 16 for f in frames[1:]], [10, 10, 5])

    def testEnvelopeName(self):
        encrypted = self.codec.encodeFile(self._makeFile(3), self.key, self.iv)
        self.assertEqual(encrypted.name, hashAndHex('report.pdf' + '1700000000500') + '.jkl')

    def testPerFrameIvsAreUnique(self):
        ivs = [self.codec.frameIv(self.iv, index) for index in range(1000)]
        self.assertEqual(len(set(ivs)), len(ivs))
        self.assertNotIn(self.iv, ivs)
        self.assertTrue(all(len(iv) == len(self.iv) for iv in ivs))

    def testSharedPolicyKeepsIv(self):
        codec = EnvelopeCodec(ivPolicy=IvPolicy.SHARED)
        self.assertEqual(codec.frameIv(self.iv, 0), self.iv)
        self.assertEqual(codec.frameIv(self.iv, 7), self.iv)

    def testSharedPolicyRoundTrip(self):
        codec = EnvelopeCodec(chunkSize=8, ivPolicy=IvPolicy.SHARED)
        original = self._makeFile(20)
        encrypted = codec.encodeFile(original, self.key, self.iv)

        self.assertEqual(codec.decodeFile(encrypted.data, self.key, self.iv).content, original.content)

        # Every frame is a plain crypt() under the file iv
        frames = list(codec.iterFrames(encrypted.data))
        self.assertEqual(codec.crypt(frames[1].ciphertext, self.key, self.iv, 'decrypt'), original.content[:8])

    def testPolicyMismatchIsRejected(self):
        shared = EnvelopeCodec(ivPolicy=IvPolicy.SHARED)
        encrypted = shared.encodeFile(self._makeFile(5), self.key, self.iv)

        with self.assertRaises(EnvelopeFormatError):
            self.codec.decodeFile(encrypted.data, self.key, self.iv)

    def testWrongKey(self):
        encrypted = self.codec.encodeFile(self._makeFile(5), self.key, self.iv)

        with self.assertRaises(EnvelopeFormatError) as ctx:
            self.codec.decodeFile(encrypted.data, self.codec.generateKey(), self.iv)
        self.assertIsInstance(ctx.exception.__cause__, CryptoFailure)

    def testTamperedContentFrame(self):
        codec = EnvelopeCodec(chunkSize=4)
        encrypted = codec.encodeFile(self._makeFile(12), self.key, self.iv)

        data = bytearray(encrypted.data)
        data[-1] ^= 0x01

        with self.assertRaises(EnvelopeFormatError) as ctx:
            codec.decodeFile(bytes(data), self.key, self.iv)
        self.assertIsInstance(ctx.exception.__cause__, CryptoFailure)

    def testTruncatedEnvelope(self):
        encrypted = self.codec.encodeFile(self._makeFile(100), self.key, self.iv)

        with self.assertRaises(EnvelopeFormatError):
            self.codec.decodeFile(encrypted.data[:-1], self.key, self.iv)

    def testTruncatedHeader(self):
        encrypted = self.codec.encodeFile(self._makeFile(100), self.key, self.iv)

        with self.assertRaises(EnvelopeFormatError):
            self.codec.decodeFile(encrypted.data + b'0001', self.key, self.iv)

    def testNonNumericHeader(self):
        encrypted = self.codec.encodeFile(self._makeFile(10), self.key, self.iv)

        for header in (b'abcdefgh', b'0000001x', b' 0000100', b'-0000100'):
            with self.subTest(header=header):
                with self.assertRaises(EnvelopeFormatError) as ctx:
                    self.codec.decodeFile(header + encrypted.data[8:], self.key, self.iv)
                self.assertEqual(ctx.exception.offset, 0)

    def testHeaderShorterThanItself(self):
        with self.assertRaises(EnvelopeFormatError):
            list(self.codec.iterFrames(b'00000003abc'))

    def testFrameShorterThanTag(self):
        for frame in (b'00000008', b'00000010' + b'\x00' * 2, b'00000023' + b'\x00' * 15):
            with self.subTest(frame=frame):
                with self.assertRaises(EnvelopeFormatError) as ctx:
                    list(self.codec.iterFrames(frame))
                self.assertEqual(ctx.exception.offset, 0)

    def testAppendedEmptyFramesAreRejected(self):
        encrypted = self.codec.encodeFile(self._makeFile(10), self.key, self.iv)

        with self.assertRaises(EnvelopeFormatError) as ctx:
            self.codec.decodeFile(encrypted.data + b'00000008' + b'00000008', self.key, self.iv)
        self.assertEqual(ctx.exception.offset, len(encrypted.data))

    def testInsertedEmptyFrameIsRejected(self):
        codec = EnvelopeCodec(chunkSize=4, ivPolicy=IvPolicy.SHARED)
        encrypted = codec.encodeFile(self._makeFile(12), self.key, self.iv)

        firstContent = list(codec.iterFrames(encrypted.data))[1].offset
        spliced = encrypted.data[:firstContent] + b'00000008' + encrypted.data[firstContent:]

        with self.assertRaises(EnvelopeFormatError) as ctx:
            codec.decodeFile(spliced, self.key, self.iv)
        self.assertEqual(ctx.exception.offset, firstContent)

    def testEmptyEnvelope(self):
        with self.assertRaises(EnvelopeFormatError):
            self.codec.decodeFile(b'', self.key, self.iv)

    def testMissingContentFrame(self):
        """Dropping a whole trailing frame keeps boundaries exact but breaks the declared size."""
        codec = EnvelopeCodec(chunkSize=4)
        encrypted = codec.encodeFile(self._makeFile(12), self.key, self.iv)

        lastFrame = list(codec.iterFrames(encrypted.data))[-1]
        with self.assertRaises(EnvelopeFormatError):
            codec.decodeFile(encrypted.data[:lastFrame.offset], self.key, self.iv)

    def testUnreadableMetadata(self):
        # A well-formed, authentic frame whose plaintext is not metadata JSON
        ciphertext = self.codec.crypt(b'not json', self.key, self.codec.frameIv(self.iv, 0), 'encrypt')
        envelope = str(len(ciphertext) + 8).zfill(8).encode('ascii') + ciphertext

        with self.assertRaises(EnvelopeFormatError):
            self.codec.decodeFile(envelope, self.key, self.iv)

    def testEncodePath(self):
        with tempfile.TemporaryDirectory() as tempDir:
            path = os.path.join(tempDir, 'notes.txt')
            with open(path, 'wb') as f:
                f.write(b'hello envelope')

            encrypted = self.codec.encodePath(path, self.key, self.iv)
            decoded = self.codec.decodeFile(encrypted.data, self.key, self.iv)

            self.assertEqual(decoded.name, 'notes.txt')
            self.assertEqual(decoded.type, 'text/plain')
            self.assertEqual(decoded.content, b'hello envelope')
            self.assertEqual(decoded.lastModified, int(os.path.getmtime(path) * 1000))

    def testEncodeManyKeepsOrder(self):
        codec = EnvelopeCodec(chunkSize=16)
        files = [self._makeFile(size, name=f'file{size}.bin') for size in (0, 5, 40, 100)]
        materials = [codec.generateKeyMaterial() for _ in files]

        results = codec.encodeMany(zip(files, materials), maxWorkers=4)

        self.assertEqual(len(results), len(files))
        for original, material, encrypted in zip(files, materials, results):
            decoded = codec.decodeFile(encrypted.data, material.key, material.iv)
            self.assertEqual(decoded.name, original.name)
            self.assertEqual(decoded.content, original.content)

    def testFileDetailsJsonIsCompact(self):
        details = FileDetails(name='a.txt', lastModified=1, type='text/plain', size=2)
        self.assertEqual(details.toJson(), b'{"name":"a.txt","lastModified":1,"type":"text/plain","size":2}')
        self.assertEqual(FileDetails.fromJson(details.toJson()), details)

    def testInvalidChunkSize(self):
        with self.assertRaises(ValueError):
            EnvelopeCodec(chunkSize=0)


if __name__ == '__main__':
    unittest.main()
