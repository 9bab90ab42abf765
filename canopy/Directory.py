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
from typing import Dict, Optional

import requests

from canopy.Kernel import getLogger
from canopy.Settings import APIError, DEFAULT_QUERY_URL, PUBKEY_QUERY_PATH, QUERY_TIMEOUT

logger = getLogger(__name__)


class UnregisteredRecipient(Exception):
    """Sharing target has no registered public key."""

    def __init__(self, address):
        super().__init__(f"No public key registered for {address}")
        self.address = address


class PublicKeyDirectory(ABC):
    """Lookup of the asymmetric public key registered to an account"""

    @abstractmethod
    def findPublicKey(self, address: str) -> Optional[str]:
        """Return the registered public key hex, or None if the account is not registered"""
        pass

    def requirePublicKey(self, address: str) -> str:
        publicKey = self.findPublicKey(address)
        if not publicKey:
            raise UnregisteredRecipient(address)
        return publicKey


class InMemoryPublicKeyDirectory(PublicKeyDirectory):

    def __init__(self, keys: Optional[Dict[str, str]] = None):
        self.keys = dict(keys or {})

    def register(self, address: str, publicKeyHex: str):
        self.keys[address] = publicKeyHex

    def findPublicKey(self, address: str) -> Optional[str]:
        return self.keys.get(address)


class RestPublicKeyDirectory(PublicKeyDirectory):
    """Public key lookup against the chain's REST endpoint.

    Expects responses shaped as {"pubkey": {"address": ..., "key": ...}}. A 404 or an empty
    key means the account never registered one.
    """

    def __init__(self, baseURL: str = DEFAULT_QUERY_URL, session: Optional[requests.Session] = None,
                 timeout=QUERY_TIMEOUT):
        self.baseURL = baseURL.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def findPublicKey(self, address: str) -> Optional[str]:
        url = f"{self.baseURL}{PUBKEY_QUERY_PATH.format(address=address)}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise APIError(f"Public key lookup for {address} failed: {e}") from e

        if response.status_code == 404:
            logger.debug(f"[DIRECTORY] No public key registered for {address}")
            return None

        if response.status_code != 200:
            raise APIError(
                f"Public key lookup for {address} returned HTTP {response.status_code}",
                statusCode=response.status_code,
                response=response
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise APIError(f"Public key lookup for {address} returned invalid JSON", response=response) from e

        pubkey = payload.get('pubkey') if isinstance(payload, dict) else None
        if not isinstance(pubkey, dict):
            return None
        return pubkey.get('key') or None
