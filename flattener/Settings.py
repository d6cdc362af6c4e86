#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# Sublime Package Flattener - Strip redundant top-level folders from ZIP packages
# Copyright (C) 2025 Sublime Package Flattener contributors
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

from flattener.Kernel import Singleton, getLogger
from flattener.Utils import getEnv, parseSize, formatSize

DEFAULT_ALLOW_HOSTS = 'codeload.github.com,bitbucket.org,codelab.org,gitlab.com'

# Upstream archives larger than this are refused with 413
DEFAULT_MAX_ZIP_BYTES = 25_000_000

DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_MAX_REDIRECTS = 5

# Flattened responses are immutable per request URL, so they are cached for a year
DEFAULT_CACHE_MAX_BYTES = 256 * 1024 * 1024
DEFAULT_CACHE_MAX_AGE = 365 * 24 * 60 * 60

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 8787

DEFAULT_PACKAGE_NAME = 'Package'

logger = getLogger(__name__)


def parseAllowHosts(allowHosts):
    """Split a comma separated host list into lower-cased, non-empty host names."""
    if isinstance(allowHosts, str):
        allowHosts = allowHosts.split(',')
    return tuple(h.strip().lower() for h in allowHosts if h and h.strip())


class SettingsGetter(Singleton):

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            raise RuntimeError('Get SettingsGetter before initialized it.')
        return cls._instances[cls]

    def initialize(
        self,
        allowHosts=None,
        maxZipBytes=None,
        fetchTimeout=None,
        maxRedirects=None,
        cacheMaxBytes=None,
        cacheMaxAge=None,
        host=None,
        port=None,
    ):
        """Initialize settings; explicit arguments win over environment variables."""
        if allowHosts is None:
            allowHosts = getEnv('ALLOW_HOSTS', DEFAULT_ALLOW_HOSTS)
        self._allowHosts = parseAllowHosts(allowHosts)

        if maxZipBytes is None:
            maxZipBytes = self._readSize('MAX_ZIP_BYTES', DEFAULT_MAX_ZIP_BYTES)
        self._maxZipBytes = int(maxZipBytes)

        if cacheMaxBytes is None:
            cacheMaxBytes = self._readSize('CACHE_MAX_BYTES', DEFAULT_CACHE_MAX_BYTES)
        self._cacheMaxBytes = int(cacheMaxBytes)

        self._fetchTimeout = fetchTimeout if fetchTimeout is not None else getEnv(
            'FETCH_TIMEOUT', DEFAULT_FETCH_TIMEOUT
        )
        self._maxRedirects = maxRedirects if maxRedirects is not None else getEnv(
            'MAX_REDIRECTS', DEFAULT_MAX_REDIRECTS
        )
        self._cacheMaxAge = cacheMaxAge if cacheMaxAge is not None else getEnv('CACHE_MAX_AGE', DEFAULT_CACHE_MAX_AGE)
        self._host = host or getEnv('FLATTENER_HOST', DEFAULT_HOST)
        self._port = port if port is not None else getEnv('FLATTENER_PORT', DEFAULT_PORT)

        logger.debug(
            f"Settings: allowHosts={self._allowHosts}, maxZipBytes={formatSize(self._maxZipBytes)}, "
            f"cacheMaxBytes={formatSize(self._cacheMaxBytes)}, cacheMaxAge={self._cacheMaxAge}s"
        )

    @staticmethod
    def _readSize(envVar, default):
        value = getEnv(envVar, None)
        if value is None:
            return default

        try:
            return parseSize(value)
        except ValueError:
            logger.warning(f"Invalid size '{value}' for {envVar}, using default {formatSize(default)}")
            return default

    @property
    def allowHosts(self):
        return self._allowHosts

    @property
    def maxZipBytes(self):
        return self._maxZipBytes

    @property
    def fetchTimeout(self):
        return self._fetchTimeout

    @property
    def maxRedirects(self):
        return self._maxRedirects

    @property
    def cacheMaxBytes(self):
        return self._cacheMaxBytes

    @property
    def cacheMaxAge(self):
        return self._cacheMaxAge

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port
