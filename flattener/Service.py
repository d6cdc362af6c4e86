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

import re

from dataclasses import dataclass

from flattener.Archive import ArchiveError, BufferBoundsViolation, MalformedArchive, parseArchive
from flattener.Kernel import getLogger
from flattener.Policy import decideFlatten, hasMarker
from flattener.Rebuilder import rebuildFlattened
from flattener.Settings import DEFAULT_PACKAGE_NAME
from flattener.Utils import formatSize

ZIP_EXTENSION = 'zip'
PACKAGE_EXTENSION = 'sublime-package'

logger = getLogger(__name__)


@dataclass(frozen=True)
class PackageResult:
    content: bytes
    filename: str
    flattened: bool
    useZipExtension: bool
    entryCount: int = 0


def sanitizePackageName(name) -> str:
    """Make a package name safe for a Content-Disposition filename"""
    name = re.sub(r'[\x00-\x1f\x7f"\\/:*?<>|;]', '_', str(name or '')).strip().strip('.')
    return name or DEFAULT_PACKAGE_NAME


def makeFilename(name, useZipExtension: bool) -> str:
    extension = ZIP_EXTENSION if useZipExtension else PACKAGE_EXTENSION
    return f'{sanitizePackageName(name)}.{extension}'


def passThrough(data: bytes, name) -> PackageResult:
    return PackageResult(
        content=data,
        filename=makeFilename(name, False),
        flattened=False,
        useZipExtension=False,
    )


def buildPackage(data, name=DEFAULT_PACKAGE_NAME) -> PackageResult:
    """
    Turn a downloaded archive into the package served to the client

    The archive is parsed once; the resulting TOC feeds both the flatten decision and the
    marker check. Anything that is not a readable ZIP is passed through unchanged, and a
    failed rebuild falls back to the original bytes.

    Args:
        data: Archive bytes
        name: Package name used for the output filename

    Returns:
        PackageResult: Output bytes and the chosen filename
    """
    data = bytes(data)

    try:
        toc = parseArchive(data)
    except MalformedArchive as e:
        logger.warning(f"Not a readable ZIP ({e.reason.name}), passing through: {e}")
        return passThrough(data, name)
    except BufferBoundsViolation as e:
        logger.warning(f"Archive headers point outside the buffer, passing through: {e}")
        return passThrough(data, name)

    decision = decideFlatten(toc)
    useZipExtension = hasMarker(toc, decision.stripPrefix or '')

    content = data
    flattened = False
    if decision.shouldFlatten:
        try:
            content = rebuildFlattened(data, toc, decision.stripPrefix)
            flattened = True
        except ArchiveError as e:
            logger.warning(f"Flattening '{decision.stripPrefix}' failed ({e.kind.name}), serving original: {e}")

    logger.info(
        f"Package '{name}': entries={len(toc)}, flattened={flattened}, marker={useZipExtension}, "
        f"size={formatSize(len(data))} -> {formatSize(len(content))}"
    )

    return PackageResult(
        content=content,
        filename=makeFilename(name, useZipExtension),
        flattened=flattened,
        useZipExtension=useZipExtension,
        entryCount=len(toc),
    )
