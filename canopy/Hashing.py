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
Address derivation for paths and byte strings.

Every node on the network is looked up by a merkle path: the SHA-256 chain over the
components of its slash separated path, each component hashed before being folded in:

    merklePath("/home/alice") == hexFullPath(hexFullPath(hexFullPath("", ""), "home"), "alice")
"""

import hashlib
import re

PATH_SEPARATOR = '/'

_UNSAFE_NAME_CHARS = re.compile(r'[/\\]')


def hashBytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hashAndHex(text: str) -> str:
    """SHA-256 of the UTF-8 encoding of text, as lower-case hex."""
    return hashBytes(text.encode('utf-8'))


def hexFullPath(path: str, name: str) -> str:
    return hashAndHex(f'{path}{hashAndHex(name)}')


def merklePath(rawPath: str) -> str:
    """Fold hexFullPath over every component of rawPath, starting from the empty digest.

    Empty components (leading slash, doubled slashes) are kept so that "/a" and "a" map
    to different addresses.
    """
    merkle = ''
    for part in rawPath.split(PATH_SEPARATOR):
        merkle = hexFullPath(merkle, part)
    return merkle


def arbitraryMerkle(path: str, item: str) -> str:
    """Address of item stored under path without building a node for it."""
    return hexFullPath(merklePath(path), item)


def hashIdentity(address: str) -> str:
    """Key under which an account appears in access-grant maps."""
    return hashAndHex(address)


def sanitizeName(name: str) -> str:
    """Strip path separators and surrounding whitespace from a single path component."""
    return _UNSAFE_NAME_CHARS.sub('', name).strip()
