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
import logging

# Error reporting stays off unless CANOPY_SENTRY_DSN is set by the host application.
import sentry_sdk

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.0.0'

# Map string levels to logging constants for standard level names
LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the library.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    # Add console handler if none exists
    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        # Update existing handlers
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('CANOPY_LOGGING_LEVEL'):
    logLevel = LOG_LEVEL_MAPPING.get(os.getenv('CANOPY_LOGGING_LEVEL').upper(), logging.WARNING)
    configureGlobalLogLevel(logLevel)


def _initializeSentry():
    sentryDsn = os.getenv('CANOPY_SENTRY_DSN')
    if not sentryDsn:
        return False

    # Suppress "sentry is attempting to send pending events..." on exit
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=sentryDsn,
        release=PUBLIC_VERSION,
        default_integrations=False,
        integrations=[
            LoggingIntegration(),
            sentryAtexit.AtexitIntegration(),
        ],
    )
    return True


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration. Sentry is initialized at most once, and only
    when CANOPY_SENTRY_DSN is present in the environment.

    Args:
        name: Logger name
        version: Version string for logging context
    """
    try:
        sentryInitialized = False
        if not sentry_sdk.get_client().is_active():
            sentryInitialized = _initializeSentry()

        logger = logging.getLogger(name)

        # Add Sentry handler if not already present
        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            formatter = logging.Formatter('%(asctime)s version[%(version)s] : %(message)s')

            sentryHandler = SentryHandler()
            sentryHandler.setFormatter(formatter)
            logger.addHandler(sentryHandler)

        adapter = logging.LoggerAdapter(logger, {'version': version or 'unknown'})

        if sentryInitialized:
            adapter.debug('Sentry initialized')

        return adapter

    except Exception as e:
        fallbackLogger = logging.getLogger(name)

        # If Sentry setup fails, log the error and continue with standard logging
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")

        return fallbackLogger


def classForName(qualifiedName):
    """
    Get a class or module by its fully qualified name.
    """
    if not isinstance(qualifiedName, str):
        qualifiedName = str(qualifiedName)

    if '.' not in qualifiedName:
        return __import__(qualifiedName)

    parts = qualifiedName.split('.')
    moduleName = ".".join(parts[:-1])
    module = __import__(moduleName, fromlist=[parts[-1]])

    try:
        return getattr(module, parts[-1])
    except AttributeError:
        raise ImportError(f"Unable to import '{qualifiedName}'.")
