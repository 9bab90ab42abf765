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
In-memory folder nodes.

A node is identified by (whoAmI, whereAmI, whoOwnsMe) and lives at whereAmI/whoAmI. It
mutates in place; every mutation returns a NodeChange holding freshly derived filetree
entries and the node's sync state:

    UNSAVED --commit--> SYNCED --mutation--> DIRTY --commit--> SYNCED

Each mutation bumps the node revision. markSynced() only accepts an entry derived from
the current revision, so publishing a stale entry never marks a node synced.

Nodes are not thread-safe; one caller owns a node at a time.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from canopy.Envelope import FileDetails
from canopy.Filetree import FiletreeBuilder, FiletreeEntry, TransactionSigner, readContents
from canopy.Hashing import merklePath, sanitizeName
from canopy.Kernel import getLogger

logger = getLogger(__name__)


class SyncState(Enum):
    UNSAVED = 'unsaved'
    DIRTY = 'dirty'
    SYNCED = 'synced'


@dataclass
class FileMeta:
    """Metadata of one child file, including its access-grant maps."""

    name: str
    size: int = 0
    lastModified: int = 0
    type: str = ''
    trackingNumber: str = ''
    editAccess: Dict[str, str] = field(default_factory=dict, repr=False)
    viewingAccess: Dict[str, str] = field(default_factory=dict, repr=False)

    def toDict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'size': self.size,
            'lastModified': self.lastModified,
            'type': self.type,
            'trackingNumber': self.trackingNumber,
            'editAccess': dict(self.editAccess),
            'viewingAccess': dict(self.viewingAccess),
        }

    @staticmethod
    def fromDict(obj: Mapping[str, Any]) -> "FileMeta":
        return FileMeta(
            name=obj['name'],
            size=int(obj.get('size', 0)),
            lastModified=int(obj.get('lastModified', 0)),
            type=obj.get('type', ''),
            trackingNumber=obj.get('trackingNumber', ''),
            editAccess=dict(obj.get('editAccess') or {}),
            viewingAccess=dict(obj.get('viewingAccess') or {}),
        )

    def copy(self) -> "FileMeta":
        """Independent copy, grant maps included."""
        return FileMeta.fromDict(self.toDict())

    @staticmethod
    def fromDetails(details: FileDetails, trackingNumber: str = '') -> "FileMeta":
        return FileMeta(
            name=details.name,
            size=details.size,
            lastModified=details.lastModified,
            type=details.type,
            trackingNumber=trackingNumber,
        )


@dataclass
class ChildDirInfo:
    myName: str
    myParent: str
    myOwner: str


@dataclass
class NodeChange:
    """Result of a node mutation.

    Attributes:
        records: Entries to broadcast, new children first and the mutated node last
        state: Sync state of the mutated node after the mutation
        existing: Requested child directories that were already present
        created: Child nodes built by the mutation
    """

    records: List[FiletreeEntry]
    state: SyncState
    existing: List[str] = field(default_factory=list)
    created: List["FolderNode"] = field(default_factory=list)


class FolderNode:
    """One directory of an account's tree, holding child directory names and child file metadata."""

    def __init__(
        self,
        whoAmI: str,
        whereAmI: str,
        whoOwnsMe: str,
        dirChildren: Optional[Iterable[str]] = None,
        fileChildren: Optional[Mapping[str, Union[FileMeta, Mapping[str, Any]]]] = None,
        state: SyncState = SyncState.UNSAVED
    ):
        self._whoAmI = whoAmI
        self._whereAmI = whereAmI
        self._whoOwnsMe = whoOwnsMe
        self._dirChildren = list(dict.fromkeys(dirChildren or []))
        self._fileChildren = {name: self._toFileMeta(meta) for name, meta in (fileChildren or {}).items()}
        self._state = state
        self._revision = 0

    @staticmethod
    def _toFileMeta(meta):
        return meta.copy() if isinstance(meta, FileMeta) else FileMeta.fromDict(meta)

    @classmethod
    def trackFolder(cls, details: Mapping[str, Any]) -> "FolderNode":
        """Track a node loaded from its stored details; it starts SYNCED."""
        return cls(
            whoAmI=details['whoAmI'],
            whereAmI=details['whereAmI'],
            whoOwnsMe=details['whoOwnsMe'],
            dirChildren=details.get('dirChildren'),
            fileChildren=details.get('fileChildren'),
            state=SyncState.SYNCED,
        )

    @classmethod
    def trackNewFolder(cls, info: ChildDirInfo) -> "FolderNode":
        return cls(whoAmI=sanitizeName(info.myName), whereAmI=info.myParent, whoOwnsMe=info.myOwner)

    @classmethod
    def fromFiletreeEntry(cls, entry: FiletreeEntry, address: str, holder, codec=None) -> "FolderNode":
        """Track a node from a filetree entry fetched off the chain, decrypting its contents if needed."""
        return cls.trackFolder(readContents(entry, address, holder, codec))

    @property
    def whoAmI(self) -> str:
        return self._whoAmI

    @property
    def whereAmI(self) -> str:
        return self._whereAmI

    @property
    def whoOwnsMe(self) -> str:
        return self._whoOwnsMe

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def myPath(self) -> str:
        return f"{self._whereAmI}/{self._whoAmI}"

    def childPath(self, child: str) -> str:
        return f"{self.myPath}/{child}"

    @property
    def dirChildren(self) -> List[str]:
        return list(self._dirChildren)

    @property
    def fileChildren(self) -> Dict[str, FileMeta]:
        """Copies of the child file metadata. Changes reach the node only through addChildFileReferences()."""
        return {name: meta.copy() for name, meta in self._fileChildren.items()}

    def details(self) -> Dict[str, Any]:
        return {
            'whoAmI': self._whoAmI,
            'whereAmI': self._whereAmI,
            'whoOwnsMe': self._whoOwnsMe,
            'dirChildren': list(self._dirChildren),
            'fileChildren': {name: meta.toDict() for name, meta in self._fileChildren.items()},
        }

    def childMerklePath(self, child: str) -> str:
        """Network address of a child of this node."""
        return merklePath(self.childPath(child))

    def makeChildDirInfo(self, childName: str) -> ChildDirInfo:
        return ChildDirInfo(myName=sanitizeName(childName), myParent=self.myPath, myOwner=self._whoOwnsMe)

    def getForFiletree(self, builder: FiletreeBuilder) -> FiletreeEntry:
        """Derive the chain-ready entry for the node as it is now."""
        return builder.build(self._whereAmI, self._whoAmI, self.details(), self._revision)

    def _touch(self):
        self._revision += 1
        if self._state is SyncState.SYNCED:
            self._state = SyncState.DIRTY

    def _change(self, changed, builder, records=None, existing=None, created=None):
        if changed:
            self._touch()

        records = list(records or [])
        records.append(self.getForFiletree(builder))
        return NodeChange(records=records, state=self._state, existing=existing or [], created=created or [])

    def addChildDirectories(self, names: Iterable[str], builder: FiletreeBuilder) -> NodeChange:
        """Add child directories by name.

        Names already present are reported in NodeChange.existing; they are not an error.
        This node's own entry is only derived when at least one name was new.
        """
        requested = [name for name in map(sanitizeName, names) if name]
        existing = [name for name in dict.fromkeys(requested) if name in self._dirChildren]
        more = [name for name in dict.fromkeys(requested) if name not in self._dirChildren]

        created = [FolderNode.trackNewFolder(self.makeChildDirInfo(name)) for name in more]
        records = [child.getForFiletree(builder) for child in created]

        if not more:
            logger.debug(f"[FOLDER] {self.myPath}: all of {existing} already exist")
            return NodeChange(records=records, state=self._state, existing=existing)

        self._dirChildren.extend(more)
        logger.debug(f"[FOLDER] {self.myPath}: added directories {more}")
        return self._change(True, builder, records=records, existing=existing, created=created)

    def addChildFileReferences(
        self, files: Mapping[str, Union[FileMeta, Mapping[str, Any]]], builder: FiletreeBuilder
    ) -> NodeChange:
        """Merge copies of file metadata into this node; a name already present is overwritten."""
        for name, meta in files.items():
            self._fileChildren[name] = self._toFileMeta(meta)

        logger.debug(f"[FOLDER] {self.myPath}: added file references {list(files)}")
        return self._change(bool(files), builder)

    def _removeDirs(self, names):
        toRemove = set(names)
        kept = [name for name in self._dirChildren if name not in toRemove]
        changed = len(kept) != len(self._dirChildren)
        self._dirChildren = kept
        return changed

    def _removeFiles(self, names):
        changed = False
        for name in names:
            if self._fileChildren.pop(name, None) is not None:
                changed = True
        return changed

    def removeChildDirectoryReferences(self, names: Iterable[str], builder: FiletreeBuilder) -> NodeChange:
        """Remove child directories; names that are not present are ignored."""
        return self._change(self._removeDirs(names), builder)

    def removeChildFileReferences(self, names: Iterable[str], builder: FiletreeBuilder) -> NodeChange:
        """Remove child files; names that are not present are ignored."""
        return self._change(self._removeFiles(names), builder)

    def removeChildDirectoryAndFileReferences(
        self, dirs: Iterable[str], files: Iterable[str], builder: FiletreeBuilder
    ) -> NodeChange:
        dirsChanged = self._removeDirs(dirs)
        filesChanged = self._removeFiles(files)
        return self._change(dirsChanged or filesChanged, builder)

    def markSynced(self, record: FiletreeEntry) -> bool:
        """Record that record was broadcast.

        Returns:
            True if the node is now SYNCED, False if record belongs to another node or an
            older revision (the node keeps its current state)
        """
        if record.rawPath != self.myPath or record.revision != self._revision:
            logger.debug(
                f"[FOLDER] {self.myPath}: ignoring stale entry for {record.rawPath!r} "
                f"revision {record.revision} (current {self._revision})"
            )
            return False

        self._state = SyncState.SYNCED
        return True

    def commit(self, change: NodeChange, signer: TransactionSigner):
        """Broadcast a change through signer and mark every node it covers as synced.

        Errors raised by signer propagate unchanged and leave all states untouched.
        """
        if not change.records:
            return None

        result = signer.signAndBroadcast(change.records)

        for node in [*change.created, self]:
            for record in change.records:
                if record.rawPath == node.myPath:
                    node.markSynced(record)

        return result
