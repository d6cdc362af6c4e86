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

from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from flattener.Cache import ResponseCache
from flattener.Fetcher import BoundedFetcher, FetchError
from flattener.Kernel import PUBLIC_VERSION, getLogger
from flattener.Service import buildPackage
from flattener.Settings import DEFAULT_PACKAGE_NAME
from flattener.Utils import formatSize

CACHE_CONTROL = 'public, max-age=31536000, immutable'

logger = getLogger(__name__)


class FlattenHandler(BaseHTTPRequestHandler):

    protocol_version = 'HTTP/1.1'
    server_version = f'SublimePackageFlattener/{PUBLIC_VERSION}'

    def __init__(self, *args, **kwargs):
        self.getPathMap = {
            '/': self._handleFlatten,
            '': self._handleFlatten,
            '/healthz': self._handleHealth,
        }
        super().__init__(*args, **kwargs)

    def _sendBytes(self, payload: bytes, status=HTTPStatus.OK, ctype="text/plain; charset=utf-8", headers=None):
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(payload)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(payload)

    def _sendText(self, text, status):
        self._sendBytes(text.encode('utf-8'), status=status)

    def _sendPackage(self, content: bytes, filename: str, cacheStatus: str):
        self._sendBytes(
            content,
            ctype='application/zip',
            headers={
                'Content-Disposition': f'attachment; filename="{filename}"',
                'Cache-Control': CACHE_CONTROL,
                'X-Cache': cacheStatus,
            },
        )

    # GET handlers
    def _handleHealth(self, args):
        self._sendText('ok', HTTPStatus.OK)

    def _handleFlatten(self, args):
        remoteURL = args.get('url', [None])[0]
        name = args.get('name', [None])[0] or DEFAULT_PACKAGE_NAME

        if not remoteURL:
            self._sendText('Missing ?url', HTTPStatus.BAD_REQUEST)
            return

        cacheKey = self.path
        cached = self.server.cache.get(cacheKey)
        if cached is not None:
            logger.debug(f"Cache hit: {cacheKey}")
            self._sendPackage(cached.content, cached.filename, 'HIT')
            return

        try:
            data = self.server.fetcher.fetch(remoteURL)
        except FetchError as e:
            logger.info(f"Fetch of {remoteURL} refused: {e} ({int(e.status)})")
            self._sendText(str(e), e.status)
            return

        result = buildPackage(data, name)
        self.server.cache.put(cacheKey, result.content, result.filename)

        logger.info(
            f"Served {result.filename} ({formatSize(len(result.content))}, flattened={result.flattened}) "
            f"for {remoteURL}"
        )
        self._sendPackage(result.content, result.filename, 'MISS')

    def do_GET(self):
        parsedURL = urlparse(self.path)
        handler = self.getPathMap.get(parsedURL.path)

        if handler is None:
            self._sendText('Not found', HTTPStatus.NOT_FOUND)
            return

        try:
            handler(parse_qs(parsedURL.query))
        except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError) as e:
            logger.debug(f"Client disconnected: {e}")
        except Exception as e:
            logger.exception(e)
            self._sendText('Internal server error', HTTPStatus.INTERNAL_SERVER_ERROR)

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


class Server(ThreadingHTTPServer):

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, serverAddress, fetcher, cache, requestHandlerClass=None):
        self.fetcher = fetcher
        self.cache = cache

        if requestHandlerClass is None:
            requestHandlerClass = FlattenHandler

        super().__init__(serverAddress, requestHandlerClass)

    @property
    def port(self):
        return self.server_address[1]

    def start(self):
        host, port = self.server_address[:2]
        logger.info(f"Listening on http://{host}:{port}")
        self.serve_forever()

    def shutdown(self):
        super().shutdown()
        self.server_close()


def createServer(host, port, fetcher=None, cache=None, handlerClass=None, settingsGetter=None):
    # Factory function to create a Server with collaborators built from settings when not given
    if fetcher is None:
        fetcher = BoundedFetcher.fromSettings(settingsGetter) if settingsGetter else BoundedFetcher()

    if cache is None:
        if settingsGetter:
            cache = ResponseCache(maxBytes=settingsGetter.cacheMaxBytes, maxAge=settingsGetter.cacheMaxAge)
        else:
            cache = ResponseCache()

    return Server((host, port), fetcher, cache, handlerClass)
