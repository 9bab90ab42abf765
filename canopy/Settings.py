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

import bitmath


def getEnv(envVar, default):
    """Read an environment variable, converted to the type of the default value.

    Unparsable values fall back to the default.
    """
    value = os.getenv(envVar)
    if value is None or default is None:
        return default if value is None else value

    try:
        if isinstance(default, bool):
            return value == "True"
        return type(default)(value)
    except (ValueError, TypeError):
        return default


# Envelope framing. Changing these breaks compatibility with envelopes already on the network.
ENCRYPTION_CHUNK_SIZE = getEnv('ENCRYPTION_CHUNK_SIZE', int(bitmath.MiB(32).bytes))
LENGTH_HEADER_WIDTH = 8
ENVELOPE_EXTENSION = getEnv('ENVELOPE_EXTENSION', '.jkl')

AES_KEY_SIZE = 32 # AES-256
AES_IV_SIZE = 16
AES_TAG_SIZE = 16 # GCM authentication tag

WRAP_DELIMITER = '|'

# Prefix marking filetree contents that are compressed and encrypted
ENCRYPTED_CONTENTS_PREFIX = 'cnpc1'

# Public key directory (chain REST endpoint)
DEFAULT_QUERY_URL = getEnv('CANOPY_QUERY_URL', 'http://127.0.0.1:1317')
PUBKEY_QUERY_PATH = '/jackal/canine-chain/filetree/pubkey/{address}'
QUERY_TIMEOUT = getEnv('QUERY_TIMEOUT', 10)

# =============================================================================
# API Exception Classes
# =============================================================================


class APIError(Exception):
    """Base exception for chain query errors"""

    def __init__(self, message, statusCode=None, response=None):
        super().__init__(message)
        self.statusCode = statusCode
        self.response = response
