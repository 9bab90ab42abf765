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
Symmetric envelope codec.

A file is stored on the network as one envelope: a sequence of frames, each frame an
8 byte zero padded ASCII decimal length followed by AES-256-GCM ciphertext. The length
counts the ciphertext plus the 8 header bytes themselves.

    envelope := metadata_frame || content_frame*
    frame    := length_header(8) || ciphertext

The metadata frame decrypts to {"name", "lastModified", "type", "size"}; content frames
decrypt to consecutive chunks of at most ENCRYPTION_CHUNK_SIZE bytes.

All frames of a file share one key. With IvPolicy.SHARED every frame is also encrypted
under the same iv, which is how envelopes already stored on the network were written and
is a GCM nonce reuse. IvPolicy.PER_FRAME (the default) derives a distinct iv per frame
from the base iv and the frame index; nothing extra is stored, but readers must use the
same policy as the writer.
"""

import base64
import binascii
import json
import mimetypes
import struct
import time

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

import bitmath

from cryptography.exceptions import InvalidTag

from canopy.Hashing import hashAndHex
from canopy.Kernel import getLogger
from canopy.Settings import (
    AES_IV_SIZE, AES_KEY_SIZE, AES_TAG_SIZE, ENCRYPTION_CHUNK_SIZE, ENVELOPE_EXTENSION, LENGTH_HEADER_WIDTH
)
from canopy.crypto import CryptoFailure, CryptoInterface

logger = getLogger(__name__)


class EnvelopeFormatError(Exception):
    """Malformed envelope: bad length header, truncated frame, failed frame or bad metadata."""

    def __init__(self, message, offset=None):
        super().__init__(message)
        self.offset = offset


class CryptMode(Enum):
    ENCRYPT = 'encrypt'
    DECRYPT = 'decrypt'


class IvPolicy(Enum):
    SHARED = 'shared'
    PER_FRAME = 'per-frame'


@dataclass(frozen=True)
class SymmetricKey:
    """AES-256 key. Its raw bytes never appear in repr() or logs."""

    raw: bytes = field(repr=False)

    def __post_init__(self):
        if len(self.raw) != AES_KEY_SIZE:
            raise ValueError(f"AES-256 key must be {AES_KEY_SIZE} bytes, got {len(self.raw)}")

    def export(self) -> bytes:
        return bytes(self.raw)


def exportKey(key: SymmetricKey) -> bytes:
    """Flat byte form of a key, stable across processes (see importKey())."""
    return key.export()


def importKey(raw: bytes) -> SymmetricKey:
    return SymmetricKey(bytes(raw))


@dataclass(frozen=True)
class KeyMaterial:
    key: SymmetricKey
    iv: bytes = field(repr=False)


@dataclass
class FileDetails:
    name: str
    lastModified: int
    type: str
    size: int

    def toJson(self) -> bytes:
        details = {'name': self.name, 'lastModified': self.lastModified, 'type': self.type, 'size': self.size}
        return json.dumps(details, separators=(',', ':'), ensure_ascii=False).encode('utf-8')

    @staticmethod
    def fromJson(data: bytes) -> "FileDetails":
        obj = json.loads(data.decode('utf-8'))
        return FileDetails(
            name=str(obj['name']),
            lastModified=int(obj.get('lastModified', 0)),
            type=str(obj.get('type', '')),
            size=int(obj['size']),
        )


@dataclass
class PlainFile:
    name: str
    content: bytes = field(repr=False)
    lastModified: int = 0 # milliseconds since epoch
    type: str = ''

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def details(self) -> FileDetails:
        return FileDetails(name=self.name, lastModified=self.lastModified, type=self.type, size=self.size)

    @staticmethod
    def fromPath(path: Union[str, Path]) -> "PlainFile":
        path = Path(path)
        mimeType, _ = mimetypes.guess_type(path.name)
        return PlainFile(
            name=path.name,
            content=path.read_bytes(),
            lastModified=int(path.stat().st_mtime * 1000),
            type=mimeType or '',
        )


@dataclass
class EncryptedFile:
    name: str
    data: bytes = field(repr=False)
    frameCount: int


@dataclass
class Frame:
    index: int
    offset: int
    ciphertext: bytes = field(repr=False)


def _describeSize(size):
    return bitmath.Byte(size).best_prefix().format('{value:.1f} {unit}')


class EnvelopeCodec:
    """Encrypts buffers, strings and whole files under AES-256-GCM.

    Args:
        crypto: CryptoInterface supplying the cipher and randomness
        chunkSize: Plaintext bytes per content frame
        ivPolicy: How frame ivs are derived from the file iv
        clock: Callable returning seconds since epoch, used to name envelopes
    """

    def __init__(
        self,
        crypto: Optional[CryptoInterface] = None,
        chunkSize: int = ENCRYPTION_CHUNK_SIZE,
        ivPolicy: IvPolicy = IvPolicy.PER_FRAME,
        clock=None
    ):
        if chunkSize < 1:
            raise ValueError(f"chunkSize must be positive, got {chunkSize}")

        self.crypto = crypto or CryptoInterface()
        self.chunkSize = chunkSize
        self.ivPolicy = ivPolicy
        self.clock = clock or time.time

    def generateKey(self) -> SymmetricKey:
        return SymmetricKey(self.crypto.randomBytes(AES_KEY_SIZE))

    def generateIv(self) -> bytes:
        return self.crypto.randomBytes(AES_IV_SIZE)

    def generateKeyMaterial(self) -> KeyMaterial:
        return KeyMaterial(key=self.generateKey(), iv=self.generateIv())

    @staticmethod
    def _normalizeMode(mode):
        if isinstance(mode, CryptMode):
            return mode

        if isinstance(mode, str):
            try:
                return CryptMode(mode.lower())
            except ValueError:
                pass

        raise ValueError(f"Invalid mode: {mode!r}. Must be 'encrypt' or 'decrypt'.")

    def crypt(self, buffer: bytes, key: SymmetricKey, iv: bytes, mode) -> bytes:
        """Encrypt or decrypt a buffer with AES-256-GCM.

        An empty buffer yields an empty result without invoking the cipher.

        Raises:
            CryptoFailure: If the cipher rejects the key, the iv or the ciphertext
        """
        mode = self._normalizeMode(mode)
        if len(buffer) < 1:
            return b''

        rawKey = key.raw if isinstance(key, SymmetricKey) else bytes(key)
        try:
            cipher = self.crypto.createAESGCM(rawKey)
            if mode is CryptMode.ENCRYPT:
                _, result = self.crypto.encryptAESGCM(cipher, bytes(buffer), iv)
            else:
                result = self.crypto.decryptAESGCM(cipher, iv, bytes(buffer))
        except (InvalidTag, ValueError, TypeError) as e:
            reason = str(e) or type(e).__name__
            logger.debug(f"[ENVELOPE] crypt({mode.value}) failed on {len(buffer)} bytes: {reason}")
            raise CryptoFailure(mode.value, f"crypt({mode.value}) failed: {reason}") from e

        return result

    def cryptText(self, text: str, key: SymmetricKey, iv: bytes, mode) -> str:
        """Encrypt a UTF-8 string to base64 text, or decrypt base64 text back to a string."""
        mode = self._normalizeMode(mode)
        if mode is CryptMode.ENCRYPT:
            return base64.b64encode(self.crypt(text.encode('utf-8'), key, iv, mode)).decode('ascii')

        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure(mode.value, f"cryptText(decrypt) input is not base64: {e}") from e
        return self.crypt(raw, key, iv, mode).decode('utf-8')

    def frameIv(self, iv: bytes, frameIndex: int) -> bytes:
        """iv used for frame frameIndex (0 is the metadata frame).

        PER_FRAME xors (frameIndex + 1) into the last four iv bytes, so no frame ever
        reuses the base iv or another frame's iv.
        """
        if self.ivPolicy is IvPolicy.SHARED or len(iv) < 4:
            return iv

        counter = struct.unpack("!I", iv[-4:])[0] ^ ((frameIndex + 1) & 0xFFFFFFFF)
        return iv[:-4] + struct.pack("!I", counter)

    def _packHeader(self, ciphertextLength):
        frameLength = ciphertextLength + LENGTH_HEADER_WIDTH
        header = str(frameLength).zfill(LENGTH_HEADER_WIDTH)
        if len(header) > LENGTH_HEADER_WIDTH:
            raise EnvelopeFormatError(f"Frame of {frameLength} bytes does not fit a {LENGTH_HEADER_WIDTH} digit header")
        return header.encode('ascii')

    def _encryptFrame(self, frameIndex, plaintext, key, iv):
        ciphertext = self.crypt(plaintext, key, self.frameIv(iv, frameIndex), CryptMode.ENCRYPT)
        return self._packHeader(len(ciphertext)) + ciphertext

    def _iterChunks(self, content):
        view = memoryview(content)
        for start in range(0, len(view), self.chunkSize):
            yield view[start:start + self.chunkSize]

    def envelopeName(self, originalName: str) -> str:
        """Network name for an envelope: hash of the original name and the current time."""
        return f"{hashAndHex(originalName + str(int(self.clock() * 1000)))}{ENVELOPE_EXTENSION}"

    def encodeFile(self, file: PlainFile, key: SymmetricKey, iv: bytes) -> EncryptedFile:
        """Encrypt a file into a single envelope blob.

        Returns:
            EncryptedFile with the derived name, the envelope bytes and the frame count
            (always ceil(size / chunkSize) + 1)
        """
        details = file.details
        frames = [self._encryptFrame(0, details.toJson(), key, iv)]
        for frameIndex, chunk in enumerate(self._iterChunks(file.content), start=1):
            frames.append(self._encryptFrame(frameIndex, chunk, key, iv))

        data = b''.join(frames)
        logger.debug(
            f"[ENVELOPE] Encoded {details.name!r} ({_describeSize(details.size)}) into {len(frames)} frames, "
            f"{_describeSize(len(data))}"
        )

        return EncryptedFile(name=self.envelopeName(details.name), data=data, frameCount=len(frames))

    def encodePath(self, path: Union[str, Path], key: SymmetricKey, iv: bytes) -> EncryptedFile:
        return self.encodeFile(PlainFile.fromPath(path), key, iv)

    def encodeMany(self, items: Iterable[Tuple[PlainFile, KeyMaterial]], maxWorkers=None) -> List[EncryptedFile]:
        """Encode independent files in parallel. Results keep the order of items."""
        items = list(items)
        with ThreadPoolExecutor(max_workers=maxWorkers) as executor:
            return list(executor.map(lambda item: self.encodeFile(item[0], item[1].key, item[1].iv), items))

    def iterFrames(self, envelope: bytes) -> Iterator[Frame]:
        """Walk an envelope frame by frame without decrypting.

        Raises:
            EnvelopeFormatError: On a non-numeric or undersized header, a frame too short to hold a
                tag, or a frame running past the end
        """
        view = memoryview(envelope)
        offset = 0
        frameIndex = 0

        while offset < len(view):
            headerEnd = offset + LENGTH_HEADER_WIDTH
            if headerEnd > len(view):
                raise EnvelopeFormatError(f"Truncated length header at offset {offset}", offset)

            rawHeader = bytes(view[offset:headerEnd])
            if not rawHeader.isdigit():
                raise EnvelopeFormatError(f"Non-numeric length header {rawHeader!r} at offset {offset}", offset)

            frameLength = int(rawHeader)
            if frameLength < LENGTH_HEADER_WIDTH:
                raise EnvelopeFormatError(
                    f"Length header {frameLength} at offset {offset} is shorter than the header itself", offset
                )

            # Every encoded frame carries at least a GCM tag
            if frameLength - LENGTH_HEADER_WIDTH < AES_TAG_SIZE:
                raise EnvelopeFormatError(
                    f"Frame at offset {offset} holds {frameLength - LENGTH_HEADER_WIDTH} bytes, "
                    f"less than a {AES_TAG_SIZE} byte authentication tag", offset
                )

            frameEnd = offset + frameLength
            if frameEnd > len(view):
                raise EnvelopeFormatError(
                    f"Frame at offset {offset} declares {frameLength} bytes, only {len(view) - offset} remain", offset
                )

            yield Frame(index=frameIndex, offset=offset, ciphertext=bytes(view[headerEnd:frameEnd]))

            offset = frameEnd
            frameIndex += 1

    def decodeFile(self, envelope: bytes, key: SymmetricKey, iv: bytes) -> PlainFile:
        """Decrypt an envelope back into the original file.

        Raises:
            EnvelopeFormatError: If the envelope is malformed, a frame fails authentication, the
                metadata is unreadable, or the content size disagrees with the metadata
        """
        details = None
        parts = []

        for frame in self.iterFrames(envelope):
            try:
                plaintext = self.crypt(frame.ciphertext, key, self.frameIv(iv, frame.index), CryptMode.DECRYPT)
            except CryptoFailure as e:
                raise EnvelopeFormatError(
                    f"Frame {frame.index} at offset {frame.offset} failed authentication", frame.offset
                ) from e

            if frame.index == 0:
                try:
                    details = FileDetails.fromJson(plaintext)
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    raise EnvelopeFormatError(f"Unreadable metadata frame: {e}", frame.offset) from e
            else:
                parts.append(plaintext)

        if details is None:
            raise EnvelopeFormatError("Envelope holds no metadata frame", 0)

        content = b''.join(parts)
        if len(content) != details.size:
            raise EnvelopeFormatError(
                f"Envelope content is {len(content)} bytes, metadata declares {details.size} "
                f"({len(parts)} content frames)"
            )

        logger.debug(f"[ENVELOPE] Decoded {details.name!r} from {len(parts) + 1} frames")

        return PlainFile(name=details.name, content=content, lastModified=details.lastModified, type=details.type)
