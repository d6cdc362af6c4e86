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

from typing import List, Tuple

from flattener.Archive import (
    CENTRAL_DIR_SIGNATURE,
    CENTRAL_DIR_STRUCT,
    DATA_DESCRIPTOR_FLAG,
    END_OF_CENTRAL_DIR_SIGNATURE,
    EOCD_STRUCT,
    LOCAL_FILE_HEADER_SIGNATURE,
    LOCAL_FILE_HEADER_STRUCT,
    MAX_NAME_LENGTH,
    UTF8_FLAG,
    ZIP64_COUNT_MARKER,
    ZIP64_SIZE_MARKER,
    Entry,
    EntryOutsidePrefix,
    MalformedArchive,
    MalformedReason,
    TableOfContents,
    checkBounds,
)
from flattener.Kernel import getLogger
from flattener.Utils import formatSize

# Version 2.0: deflate, folders. Nothing here needs ZIP64 (4.5).
VERSION_MADE_BY = 20
VERSION_NEEDED = 20

# The all-ones values are ZIP64 markers, so the largest plain value is one below them
MAX_ENTRY_COUNT = ZIP64_COUNT_MARKER - 1
MAX_OFFSET = ZIP64_SIZE_MARKER - 1

logger = getLogger(__name__)


def stripEntryName(name: str, prefix: str) -> str:
    """
    Remove the strip prefix from an entry name

    Returns:
        str: The new name, empty when the entry is the prefix itself

    Raises:
        EntryOutsidePrefix: If the name does not start with the prefix
    """
    if not name.startswith(prefix):
        raise EntryOutsidePrefix(name, prefix)
    return name[len(prefix):]


def checkFieldFits(value: int, limit: int, fieldName: str, offset: int = None):
    """
    Raises:
        MalformedArchive: FIELD_OVERFLOW if value does not fit into its header field
    """
    if value > limit:
        raise MalformedArchive(
            f"{fieldName} {value} exceeds the header field limit {limit}", MalformedReason.FIELD_OVERFLOW, offset
        )


def outputFlags(entry: Entry) -> int:
    # CRC and sizes are known, so they are declared inline and no data descriptor follows
    return (entry.flags | UTF8_FLAG) & ~DATA_DESCRIPTOR_FLAG & 0xFFFF


def selectEntries(toc: TableOfContents, prefix: str) -> List[Tuple[Entry, bytes]]:
    """
    Pick the entries that survive flattening, paired with their new UTF-8 encoded names

    Directory entries are dropped; the rebuilt archive carries no explicit directory records.
    """
    selected = []
    for entry in toc.entries:
        if entry.isDirectory:
            continue

        newName = stripEntryName(entry.name, prefix)
        if not newName:
            continue

        nameBytes = newName.encode('utf-8')
        # Legacy CP437 names can grow when re-encoded as UTF-8
        checkFieldFits(len(nameBytes), MAX_NAME_LENGTH, 'Name length', entry.localHeaderOffset)
        selected.append((entry, nameBytes))
    return selected


def makeLocalFileHeader(entry: Entry, nameBytes: bytes) -> bytes:
    """Create a local file header with inline CRC and sizes and no extra field"""
    header = LOCAL_FILE_HEADER_STRUCT.pack(
        LOCAL_FILE_HEADER_SIGNATURE,
        VERSION_NEEDED,
        outputFlags(entry),
        entry.compressionMethod,
        entry.modTime,
        entry.modDate,
        entry.crc32,
        entry.compressedSize,
        entry.uncompressedSize,
        len(nameBytes),
        0, # Extra field length
    )
    return header + nameBytes


def makeCentralDirHeader(entry: Entry, nameBytes: bytes, localHeaderOffset: int) -> bytes:
    """Create a central directory header mirroring the local header written at localHeaderOffset"""
    header = CENTRAL_DIR_STRUCT.pack(
        CENTRAL_DIR_SIGNATURE,
        VERSION_MADE_BY,
        VERSION_NEEDED,
        outputFlags(entry),
        entry.compressionMethod,
        entry.modTime,
        entry.modDate,
        entry.crc32,
        entry.compressedSize,
        entry.uncompressedSize,
        len(nameBytes),
        0, # Extra field length
        0, # File comment length
        0, # Disk number start
        0, # Internal file attributes
        0, # External file attributes
        localHeaderOffset,
    )
    return header + nameBytes


def makeEndOfCentralDir(entryCount: int, centralDirSize: int, centralDirStart: int) -> bytes:
    checkFieldFits(entryCount, MAX_ENTRY_COUNT, 'Entry count')
    checkFieldFits(centralDirSize, MAX_OFFSET, 'Central directory size')
    checkFieldFits(centralDirStart, MAX_OFFSET, 'Central directory offset')

    return EOCD_STRUCT.pack(
        END_OF_CENTRAL_DIR_SIGNATURE,
        0, # Number of this disk
        0, # Disk where central directory starts
        entryCount, # Central directory records on this disk
        entryCount, # Total central directory records
        centralDirSize,
        centralDirStart,
        0, # Comment length
    )


def emitLocalRecord(data, entry: Entry, nameBytes: bytes, offset: int) -> Tuple[Tuple[bytes, memoryview], int]:
    """
    Emit one local header followed by the entry's untouched compressed payload

    Args:
        data: Source archive buffer
        entry: Entry to copy
        nameBytes: New encoded name
        offset: Output position where the local header starts

    Returns:
        tuple: ((header, payload), nextOffset)
    """
    checkBounds(data, entry.payloadStart, entry.compressedSize)
    checkFieldFits(offset, MAX_OFFSET, 'Local header offset', entry.localHeaderOffset)

    header = makeLocalFileHeader(entry, nameBytes)
    payload = memoryview(data)[entry.payloadStart:entry.payloadEnd]
    return (header, payload), offset + len(header) + len(payload)


def emitCentralRecord(entry: Entry, nameBytes: bytes, localHeaderOffset: int, offset: int) -> Tuple[bytes, int]:
    """Emit one central directory header at offset, returning it with the next offset"""
    header = makeCentralDirHeader(entry, nameBytes, localHeaderOffset)
    return header, offset + len(header)


def rebuildFlattened(data, toc: TableOfContents, prefix: str) -> bytes:
    """
    Build a new archive whose entries have the strip prefix removed

    Payload bytes are copied verbatim from the source buffer; only names, flags and offsets
    change. The output is assembled completely before it is returned, so a failure never
    leaks a partially written archive.

    Args:
        data: Source archive buffer the TOC was parsed from
        toc: Table of contents of data
        prefix: Prefix to strip (e.g. "plugin/")

    Returns:
        bytes: [local header + payload]* [central directory]* [EOCD]

    Raises:
        EntryOutsidePrefix: A selected entry does not start with the prefix
        BufferBoundsViolation: A payload lies outside the source buffer
        MalformedArchive: FIELD_OVERFLOW when a name, offset or count does not fit its header field
    """
    selected = selectEntries(toc, prefix)

    # Payload chunks are memoryviews into data; the only full-size copy is the final join
    chunks = []
    offset = 0
    localHeaderOffsets = []

    for entry, nameBytes in selected:
        recordChunks, nextOffset = emitLocalRecord(data, entry, nameBytes, offset)
        localHeaderOffsets.append(offset)
        chunks.extend(recordChunks)
        offset = nextOffset

    centralDirStart = offset
    for (entry, nameBytes), localHeaderOffset in zip(selected, localHeaderOffsets):
        header, offset = emitCentralRecord(entry, nameBytes, localHeaderOffset, offset)
        chunks.append(header)

    centralDirSize = offset - centralDirStart
    chunks.append(makeEndOfCentralDir(len(selected), centralDirSize, centralDirStart))
    output = b''.join(chunks)

    logger.debug(
        f"Rebuilt archive: prefix='{prefix}', entries={len(selected)}/{len(toc)}, size={formatSize(len(output))}"
    )

    return output
