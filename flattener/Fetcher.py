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

import ipaddress
import socket

from http import HTTPStatus
from urllib.parse import urljoin, urlparse

import requests

from urllib3 import PoolManager
from urllib3.connection import HTTPConnection
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from flattener.Kernel import PUBLIC_VERSION, getLogger
from flattener.Settings import (
    DEFAULT_ALLOW_HOSTS, DEFAULT_FETCH_TIMEOUT, DEFAULT_MAX_REDIRECTS, DEFAULT_MAX_ZIP_BYTES, parseAllowHosts
)
from flattener.Utils import formatSize

FETCH_CHUNK = 64 * 1024

REDIRECT_STATUSES = (
    HTTPStatus.MOVED_PERMANENTLY,
    HTTPStatus.FOUND,
    HTTPStatus.SEE_OTHER,
    HTTPStatus.TEMPORARY_REDIRECT,
    HTTPStatus.PERMANENT_REDIRECT,
)

logger = getLogger(__name__)


class FetchError(Exception):
    """Base of every failure while validating or downloading the upstream archive"""
    status = HTTPStatus.BAD_GATEWAY

    def __init__(self, message, status=None):
        super().__init__(message)
        if status is not None:
            self.status = status


class URLRejected(FetchError):
    status = HTTPStatus.BAD_REQUEST


class PayloadTooLarge(FetchError):
    status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE

    def __init__(self, maxBytes):
        super().__init__('File too large')
        self.maxBytes = maxBytes


class UpstreamError(FetchError):
    status = HTTPStatus.BAD_GATEWAY


def isIPLiteral(host):
    try:
        ipaddress.ip_address(host.strip('[]'))
        return True
    except ValueError:
        return False


def validateURL(url, allowHosts):
    """
    Check that url is an https URL to an allowed host

    Args:
        url: Remote URL as given by the client
        allowHosts: Iterable of lower-cased host names

    Returns:
        str: The lower-cased host name

    Raises:
        URLRejected: 400 for malformed or unsafe URLs, 403 for hosts not on the allow list
    """
    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except ValueError:
        raise URLRejected('Invalid url parameter')

    if not parsed.scheme or not parsed.netloc or not host:
        raise URLRejected('Invalid url parameter')

    if parsed.scheme.lower() != 'https':
        raise URLRejected('Only https URLs are allowed')

    if parsed.username or parsed.password:
        raise URLRejected('Credentials in URLs are not allowed')

    host = host.lower()
    if isIPLiteral(host) or host == 'localhost':
        raise URLRejected('IP/localhost targets are not allowed')

    if host not in allowHosts:
        raise URLRejected('Host not permitted', status=HTTPStatus.FORBIDDEN)

    return host


class FetchAdapter(HTTPAdapter):
    """
    HTTP adapter without urllib3 retries and with TCP keepalive, so a stalled upstream is
    detected instead of holding a server thread forever.
    """

    DEFAULT_SOCKET_OPTIONS = HTTPConnection.default_socket_options

    def __init__(self, *args, **kwargs):
        # Retries and redirects are handled by BoundedFetcher
        kwargs['max_retries'] = Retry(total=0, redirect=False)
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        socketOptions = list(self.DEFAULT_SOCKET_OPTIONS)
        socketOptions.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        if hasattr(socket, "TCP_KEEPIDLE"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 30))
        if hasattr(socket, "TCP_KEEPINTVL"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))
        if hasattr(socket, "TCP_KEEPCNT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3))

        kwargs["socket_options"] = socketOptions
        self.poolmanager = PoolManager(num_pools=connections, maxsize=maxsize, block=block, **kwargs)


class BoundedFetcher:
    """
    Download an archive from an allow-listed host with a hard size cap

    Redirects are followed manually so every hop is validated before it is requested.
    """

    def __init__(
        self,
        allowHosts=DEFAULT_ALLOW_HOSTS,
        maxBytes=DEFAULT_MAX_ZIP_BYTES,
        timeout=DEFAULT_FETCH_TIMEOUT,
        maxRedirects=DEFAULT_MAX_REDIRECTS,
        session=None,
    ):
        self.allowHosts = parseAllowHosts(allowHosts)
        self.maxBytes = maxBytes
        self.timeout = timeout
        self.maxRedirects = maxRedirects

        if session is None:
            session = requests.Session()
            adapter = FetchAdapter()
            session.mount('https://', adapter)
            session.headers['User-Agent'] = f'SublimePackageFlattener/{PUBLIC_VERSION}'
        self.session = session

    @classmethod
    def fromSettings(cls, settingsGetter):
        return cls(
            allowHosts=settingsGetter.allowHosts,
            maxBytes=settingsGetter.maxZipBytes,
            timeout=settingsGetter.fetchTimeout,
            maxRedirects=settingsGetter.maxRedirects,
        )

    def validate(self, url):
        return validateURL(url, self.allowHosts)

    def fetch(self, url) -> bytes:
        """
        Fetch url and return its body

        Raises:
            URLRejected: The URL or a redirect target is not permitted
            PayloadTooLarge: The body is larger than maxBytes
            UpstreamError: Upstream failed, answered non-2xx, or redirected too often
        """
        self.validate(url)

        for _ in range(self.maxRedirects + 1):
            try:
                response = self.session.get(url, stream=True, allow_redirects=False, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.warning(f"Upstream request failed for {url}: {e}")
                raise UpstreamError(f'Upstream error: {e.__class__.__name__}')

            with response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get('Location')
                    if not location:
                        raise UpstreamError(f'Upstream error: {response.status_code} without Location')

                    nextURL = urljoin(url, location)
                    try:
                        self.validate(nextURL)
                    except URLRejected as e:
                        logger.warning(f"Rejected redirect from {url} to {nextURL}: {e}")
                        raise URLRejected('Redirected host not permitted', status=HTTPStatus.FORBIDDEN)

                    logger.debug(f"Following redirect {response.status_code}: {url} -> {nextURL}")
                    url = nextURL
                    continue

                if not response.ok:
                    raise UpstreamError(f'Upstream error: {response.status_code}')

                return self.readLimited(response)

        raise UpstreamError('Upstream error: too many redirects')

    def readLimited(self, response) -> bytes:
        """Read a streamed response body, refusing anything over maxBytes"""
        contentLength = response.headers.get('Content-Length')
        if contentLength and contentLength.isdigit() and int(contentLength) > self.maxBytes:
            logger.warning(f"Declared size {formatSize(int(contentLength))} over limit {formatSize(self.maxBytes)}")
            raise PayloadTooLarge(self.maxBytes)

        body = bytearray()
        try:
            for chunk in response.iter_content(chunk_size=FETCH_CHUNK):
                if not chunk:
                    continue

                body += chunk
                if len(body) > self.maxBytes:
                    logger.warning(f"Streamed body over limit {formatSize(self.maxBytes)}, aborting")
                    raise PayloadTooLarge(self.maxBytes)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Upstream body read failed: {e}")
            raise UpstreamError(f'Upstream error: {e.__class__.__name__}')

        logger.debug(f"Fetched {formatSize(len(body))} from {response.url}")
        return bytes(body)
