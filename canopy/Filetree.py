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
Chain-ready filetree entries.

A FiletreeEntry is what a folder node hands to the transaction layer: the node's contents
plus the addressing hashes and the creator's own access grants. The transaction layer
treats it as opaque; only toMessage() is meant to cross that boundary.

Contents are either plain JSON or, with encryptContents, the prefix "cnpc1" followed by
the base64 AES-GCM encryption of base64(zlib(json)) under a key wrapped for the creator.
"""

import base64
import json
import uuid
import zlib

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from canopy.Envelope import CryptMode, EnvelopeCodec
from canopy.Hashing import hashAndHex, hashIdentity, merklePath
from canopy.KeyWrap import AsymmetricProvider, KeyHolder, MissingGrant, unwrapFromSelf, wrapKeyMaterial
from canopy.Kernel import getLogger
from canopy.Settings import ENCRYPTED_CONTENTS_PREFIX

logger = getLogger(__name__)


@dataclass
class FiletreeEntry:
    creator: str
    account: str
    hashParent: str
    hashChild: str
    contents: str = field(repr=False)
    viewers: Dict[str, str] = field(repr=False)
    editors: Dict[str, str] = field(repr=False)
    trackingNumber: str
    # Local bookkeeping, never sent to the chain
    rawPath: str = ''
    revision: int = 0

    def toMessage(self) -> Dict[str, Any]:
        """Message body for the transaction layer; grant maps travel as JSON strings."""
        return {
            'creator': self.creator,
            'account': self.account,
            'hashParent': self.hashParent,
            'hashChild': self.hashChild,
            'contents': self.contents,
            'viewers': json.dumps(self.viewers, separators=(',', ':')),
            'editors': json.dumps(self.editors, separators=(',', ':')),
            'trackingNumber': self.trackingNumber,
        }

    @staticmethod
    def fromMessage(message: Dict[str, Any], rawPath: str = '') -> "FiletreeEntry":

        def grants(value):
            return json.loads(value) if isinstance(value, str) else dict(value or {})

        return FiletreeEntry(
            creator=message['creator'],
            account=message['account'],
            hashParent=message['hashParent'],
            hashChild=message['hashChild'],
            contents=message['contents'],
            viewers=grants(message.get('viewers')),
            editors=grants(message.get('editors')),
            trackingNumber=message['trackingNumber'],
            rawPath=rawPath,
        )


class TransactionSigner(ABC):
    """Signs and broadcasts filetree entries. Errors propagate to the caller unchanged."""

    @abstractmethod
    def signAndBroadcast(self, records: List[FiletreeEntry]):
        pass


class FiletreeBuilder:
    """Derives FiletreeEntry records on behalf of one signing account.

    Args:
        creator: Account address of the signer
        holder: The signer's AsymmetricProvider, used to wrap each entry key for itself
        codec: EnvelopeCodec used for key generation and contents encryption
        encryptContents: Store contents compressed and encrypted instead of as plain JSON
        newTrackingNumber: Tracking number factory
    """

    def __init__(
        self,
        creator: str,
        holder: KeyHolder,
        codec: Optional[EnvelopeCodec] = None,
        encryptContents: bool = False,
        newTrackingNumber: Callable[[], str] = None
    ):
        self.creator = creator
        self.holder = holder
        self.codec = codec or EnvelopeCodec(getattr(holder, 'crypto', None))
        self.encryptContents = encryptContents
        self.newTrackingNumber = newTrackingNumber or (lambda: str(uuid.uuid4()))

    def _encodeContents(self, contents, material):
        plain = json.dumps(contents, separators=(',', ':'), ensure_ascii=False)
        if not self.encryptContents:
            return plain

        packed = base64.b64encode(zlib.compress(plain.encode('utf-8'))).decode('ascii')
        return ENCRYPTED_CONTENTS_PREFIX + self.codec.cryptText(packed, material.key, material.iv, CryptMode.ENCRYPT)

    def build(self, parentPath: str, childName: str, contents: Dict[str, Any], revision: int = 0) -> FiletreeEntry:
        material = self.codec.generateKeyMaterial()
        wrapped = wrapKeyMaterial(material, self.holder.publicKeyHex, self.holder)
        ownerHash = hashIdentity(self.creator)

        entry = FiletreeEntry(
            creator=self.creator,
            account=hashAndHex(self.creator),
            hashParent=merklePath(parentPath),
            hashChild=hashAndHex(childName),
            contents=self._encodeContents(contents, material),
            viewers={ownerHash: wrapped},
            editors={ownerHash: wrapped},
            trackingNumber=self.newTrackingNumber(),
            rawPath=f"{parentPath}/{childName}",
            revision=revision,
        )
        logger.debug(f"[FILETREE] Built entry for {entry.rawPath!r} revision {revision}")
        return entry


def readContents(
    entry: FiletreeEntry, address: str, holder: AsymmetricProvider, codec: Optional[EnvelopeCodec] = None
) -> Dict[str, Any]:
    """Parse an entry's contents, decrypting them with address's own grant when needed.

    Raises:
        MissingGrant: If the contents are encrypted and address holds no grant on the entry
        MalformedGrant: If address's grant cannot be unwrapped by holder
        CryptoFailure: If the contents do not decrypt under the unwrapped key
    """
    contents = entry.contents
    if not contents.startswith(ENCRYPTED_CONTENTS_PREFIX):
        return json.loads(contents)

    identity = hashIdentity(address)
    wrapped = entry.editors.get(identity) or entry.viewers.get(identity)
    if not wrapped:
        raise MissingGrant(address, entry.rawPath or entry.hashChild)

    material = unwrapFromSelf(wrapped, holder.asymmetricDecrypt)
    codec = codec or EnvelopeCodec()
    packed = codec.cryptText(contents[len(ENCRYPTED_CONTENTS_PREFIX):], material.key, material.iv, CryptMode.DECRYPT)
    return json.loads(zlib.decompress(base64.b64decode(packed)).decode('utf-8'))
