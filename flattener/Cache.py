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

import threading
import time

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from flattener.Kernel import getLogger
from flattener.Settings import DEFAULT_CACHE_MAX_AGE, DEFAULT_CACHE_MAX_BYTES
from flattener.Utils import formatSize

logger = getLogger(__name__)


@dataclass(frozen=True)
class CachedResponse:
    content: bytes
    filename: str
    storedAt: float = field(default_factory=time.monotonic)

    @property
    def size(self):
        return len(self.content)


class ResponseCache:
    """
    In-memory LRU cache of finished responses keyed by request identity (path + query)

    Shared by all handler threads of the server, so every access holds the lock.
    """

    def __init__(self, maxBytes=DEFAULT_CACHE_MAX_BYTES, maxAge=DEFAULT_CACHE_MAX_AGE, clock=time.monotonic):
        self.maxBytes = maxBytes
        self.maxAge = maxAge
        self._clock = clock
        self._entries = OrderedDict()
        self._totalBytes = 0
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def _isExpired(self, cached: CachedResponse) -> bool:
        return self.maxAge > 0 and self._clock() - cached.storedAt >= self.maxAge

    def _remove(self, key):
        cached = self._entries.pop(key)
        self._totalBytes -= cached.size

    def get(self, key) -> Optional[CachedResponse]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                self._misses += 1
                return None

            if self._isExpired(cached):
                logger.debug(f"Cache entry expired: {key}")
                self._remove(key)
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return cached

    def put(self, key, content: bytes, filename: str) -> bool:
        """
        Store a response, evicting least recently used entries to stay under maxBytes

        Returns:
            bool: False if the response alone is larger than the cache
        """
        cached = CachedResponse(content=bytes(content), filename=filename, storedAt=self._clock())
        if cached.size > self.maxBytes:
            logger.debug(f"Not caching {key}: {formatSize(cached.size)} exceeds {formatSize(self.maxBytes)}")
            return False

        with self._lock:
            if key in self._entries:
                self._remove(key)

            self._entries[key] = cached
            self._totalBytes += cached.size

            while self._totalBytes > self.maxBytes:
                evictedKey = next(iter(self._entries))
                self._remove(evictedKey)
                logger.debug(f"Evicted cache entry: {evictedKey}")

        return True

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._totalBytes = 0

    def getStats(self):
        with self._lock:
            return {
                'entries': len(self._entries),
                'bytes': self._totalBytes,
                'hits': self._hits,
                'misses': self._misses,
            }

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, key):
        with self._lock:
            return key in self._entries
