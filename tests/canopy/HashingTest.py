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

import hashlib
import unittest

from canopy.Hashing import (
    arbitraryMerkle, hashAndHex, hashBytes, hashIdentity, hexFullPath, merklePath, sanitizeName
)

EMPTY_SHA256 = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
ABC_SHA256 = 'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'


def sha(text):
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


class HashingTest(unittest.TestCase):

    def testHashAndHexKnownVectors(self):
        self.assertEqual(hashAndHex(''), EMPTY_SHA256)
        self.assertEqual(hashAndHex('abc'), ABC_SHA256)
        self.assertEqual(hashBytes(b'abc'), ABC_SHA256)

    def testHashAndHexUsesUtf8(self):
        self.assertEqual(hashAndHex('żółw'), hashlib.sha256('żółw'.encode('utf-8')).hexdigest())

    def testHexFullPath(self):
        self.assertEqual(hexFullPath('parent', 'child'), sha('parent' + sha('child')))

    def testMerklePathFoldsEveryComponent(self):
        """Each component is hashed and folded into the running digest, leading empty one included."""
        expected = ''
        for part in ['', 'home', 'alice', 'docs']:
            expected = sha(expected + sha(part))

        self.assertEqual(merklePath('/home/alice/docs'), expected)

    def testMerklePathDistinguishesLeadingSlash(self):
        self.assertNotEqual(merklePath('/home'), merklePath('home'))
        self.assertEqual(merklePath('home'), hexFullPath('', 'home'))

    def testMerklePathIsDeterministic(self):
        self.assertEqual(merklePath('s/alice/docs'), merklePath('s/alice/docs'))
        self.assertNotEqual(merklePath('s/alice/docs'), merklePath('s/alice/doc'))

    def testArbitraryMerkle(self):
        self.assertEqual(arbitraryMerkle('/home/alice', 'file.txt'), hexFullPath(merklePath('/home/alice'), 'file.txt'))

    def testHashIdentity(self):
        self.assertEqual(hashIdentity('alice'), sha('alice'))

    def testSanitizeName(self):
        testCases = [
            ('reports', 'reports'),
            ('a/b', 'ab'),
            ('back\\slash', 'backslash'),
            ('  padded  ', 'padded'),
            ('/', ''),
        ]
        for name, expected in testCases:
            with self.subTest(name=name):
                self.assertEqual(sanitizeName(name), expected)


if __name__ == '__main__':
    unittest.main()
