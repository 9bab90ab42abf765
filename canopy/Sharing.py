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
Per-file access grants.

Every FileMeta carries two maps from hashed account identity to a wrapped key string:
editAccess and viewingAccess. An identity holds at most one role per file; grant()
moves an identity between maps instead of adding a second entry.

Revoking removes the wrapped copy from the metadata only. The file key itself is not
rotated, so a revoked collaborator who kept the key can still decrypt old envelopes.
"""

import json

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional, Union

from canopy.Envelope import KeyMaterial
from canopy.FolderTree import FileMeta
from canopy.Hashing import arbitraryMerkle, hashAndHex, hashIdentity
from canopy.KeyWrap import AsymmetricProvider, unwrapFromSelf, wrapForAccount
from canopy.Kernel import getLogger

logger = getLogger(__name__)


class AccessRole(Enum):
    EDIT = 'edit'
    VIEW = 'view'


def _normalizeRole(role):
    return role if isinstance(role, AccessRole) else AccessRole(str(role).lower())


def _grantMap(fileMeta, role):
    return fileMeta.editAccess if role is AccessRole.EDIT else fileMeta.viewingAccess


def roleOf(fileMeta: FileMeta, hashedIdentity: str) -> Optional[AccessRole]:
    if hashedIdentity in fileMeta.editAccess:
        return AccessRole.EDIT
    if hashedIdentity in fileMeta.viewingAccess:
        return AccessRole.VIEW
    return None


def grant(fileMeta: FileMeta, hashedIdentity: str, wrappedKeyString: str, role: Union[AccessRole, str]) -> FileMeta:
    """Give hashedIdentity the role on fileMeta, dropping any grant it held in the other role."""
    role = _normalizeRole(role)
    otherRole = AccessRole.VIEW if role is AccessRole.EDIT else AccessRole.EDIT

    if _grantMap(fileMeta, otherRole).pop(hashedIdentity, None) is not None:
        logger.debug(f"[SHARING] {fileMeta.name}: moving {hashedIdentity[:12]} from {otherRole.value} to {role.value}")

    _grantMap(fileMeta, role)[hashedIdentity] = wrappedKeyString
    return fileMeta


def revoke(fileMeta: FileMeta, hashedIdentity: str) -> Optional[AccessRole]:
    """Remove hashedIdentity from both grant maps.

    Metadata written before exclusivity was enforced may hold an identity in both maps;
    both entries are dropped.

    Returns:
        The strongest role removed (EDIT over VIEW), or None if it held none
    """
    removed = [
        role for role in (AccessRole.EDIT, AccessRole.VIEW)
        if _grantMap(fileMeta, role).pop(hashedIdentity, None) is not None
    ]
    if not removed:
        return None

    logger.debug(
        f"[SHARING] {fileMeta.name}: revoked {'+'.join(r.value for r in removed)} from {hashedIdentity[:12]}"
    )
    return removed[0]


def shareFile(
    fileMeta: FileMeta, address: str, material: KeyMaterial, role: Union[AccessRole, str],
    provider: AsymmetricProvider, directory
) -> str:
    """Wrap material for address's registered key and grant it the role.

    Raises:
        UnregisteredRecipient: If address has no registered public key
    """
    wrapped = wrapForAccount(address, material, provider, directory)
    grant(fileMeta, hashIdentity(address), wrapped, role)
    return wrapped


def unwrapOwnGrant(fileMeta: FileMeta, address: str, holder: AsymmetricProvider) -> Optional[KeyMaterial]:
    """Key material for address's own grant on fileMeta, or None if it holds no grant.

    Raises:
        MalformedGrant: If the grant exists but cannot be unwrapped by holder
    """
    identity = hashIdentity(address)
    role = roleOf(fileMeta, identity)
    if role is None:
        return None
    return unwrapFromSelf(_grantMap(fileMeta, role)[identity], holder.asymmetricDecrypt)


# ============================================================================
# Sharing records
# ============================================================================


@dataclass
class SharingRecord:
    """One file or folder shared by owner with a receiver."""

    owner: str
    rawPath: str
    role: str = AccessRole.VIEW.value
    isFile: bool = True


@dataclass
class SharingEntry:
    """Chain-ready form of a SharingRecord, addressed to the receiver."""

    receiver: str
    address: str
    contents: str

    def toMessage(self):
        return asdict(self)


def sharingAddress(toIdentity: str, ownerIdentity: str, rawPath: str) -> str:
    """Address under which toIdentity finds what ownerIdentity shared at rawPath."""
    return arbitraryMerkle(f"s/{toIdentity}", f"{ownerIdentity}{rawPath}")


def serializeSharing(toIdentity: str, record: SharingRecord) -> SharingEntry:
    return SharingEntry(
        receiver=hashAndHex(toIdentity),
        address=sharingAddress(toIdentity, record.owner, record.rawPath),
        contents=json.dumps(asdict(record), separators=(',', ':'), ensure_ascii=False),
    )


def deserializeSharing(
    fromOwnerIdentity: str, path: str, reader: Callable[[str, str], Optional[str]]
) -> Optional[SharingRecord]:
    """Fetch and parse what fromOwnerIdentity shared at path.

    Args:
        fromOwnerIdentity: Account that shared the item
        path: Raw path of the shared item
        reader: Query collaborator, (ownerIdentity, path) -> stored contents or None

    Raises:
        ValueError: If the stored contents are not a sharing record for this owner and path
    """
    contents = reader(fromOwnerIdentity, path)
    if contents is None:
        return None

    try:
        obj = json.loads(contents)
        record = SharingRecord(
            owner=obj['owner'],
            rawPath=obj['rawPath'],
            role=_normalizeRole(obj.get('role', AccessRole.VIEW.value)).value,
            isFile=bool(obj.get('isFile', True)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed sharing record for {path!r}: {e}") from e

    if record.owner != fromOwnerIdentity or record.rawPath != path:
        raise ValueError(f"Sharing record is for {record.owner}:{record.rawPath}, not {fromOwnerIdentity}:{path}")

    return record
