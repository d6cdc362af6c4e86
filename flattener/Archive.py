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

import struct
import zipfile

from dataclasses import dataclass
from enum import Enum, auto
from typing import FrozenSet, Optional, Tuple

from flattener.Kernel import getLogger

logger = getLogger(__name__)

# ZIP format constants (from PKZIP APPNOTE.TXT specification)
LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0]  # 0x04034b50
CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0]  # 0x02014b50
END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0]  # 0x06054b50

LOCAL_FILE_HEADER_SIZE = 30
CENTRAL_DIR_HEADER_SIZE = 46
END_OF_CENTRAL_DIR_SIZE = 22

# The archive comment length is a 16-bit field, so the EOCD starts within this many bytes of the end
MAX_COMMENT_LENGTH = 0xFFFF
EOCD_SEARCH_MARGIN = 64
EOCD_SEARCH_WINDOW = MAX_COMMENT_LENGTH + END_OF_CENTRAL_DIR_SIZE + EOCD_SEARCH_MARGIN

# General purpose bit flags
DATA_DESCRIPTOR_FLAG = 0x0008  # Bit 3: sizes/CRC in data descriptor
UTF8_FLAG = 0x0800  # Bit 11: filename and comment UTF-8 encoded

ZIP64_COUNT_MARKER = 0xFFFF
ZIP64_SIZE_MARKER = 0xFFFFFFFF

# Name and extra lengths are 16-bit header fields
MAX_NAME_LENGTH = 0xFFFF

# Signature, disk, cd disk, disk entries, total entries, cd size, cd offset, comment length
EOCD_STRUCT = struct.Struct('<IHHHHIIH')

# Signature, made by, needed, flags, method, time, date, crc, csize, usize,
# name len, extra len, comment len, disk start, internal attr, external attr, local header offset
CENTRAL_DIR_STRUCT = struct.Struct('<IHHHHHHIIIHHHHHII')

# Signature, needed, flags, method, time, date, crc, csize, usize, name len, extra len
LOCAL_FILE_HEADER_STRUCT = struct.Struct('<IHHHHHIIIHH')

MARKER_FILE_NAME = '.no-sublime-package'


class ArchiveErrorKind(Enum):
    """Closed set of failure kinds reported by the archive core"""
    MALFORMED_ARCHIVE = auto()
    ENTRY_OUTSIDE_PREFIX = auto()
    BUFFER_BOUNDS_VIOLATION = auto()


class MalformedReason(Enum):
    EOCD_NOT_FOUND = auto()
    BAD_CENTRAL_DIRECTORY = auto()
    MISSING_LOCAL_HEADER = auto()
    ZIP64_UNSUPPORTED = auto()
    FIELD_OVERFLOW = auto()


class ArchiveError(Exception):
    """Base of every error raised while parsing or rebuilding an archive"""
    kind: ArchiveErrorKind = None


class MalformedArchive(ArchiveError):
    kind = ArchiveErrorKind.MALFORMED_ARCHIVE

    def __init__(self, message: str, reason: MalformedReason, offset: int = None):
        super().__init__(message)
        self.reason = reason
        self.offset = offset


class EntryOutsidePrefix(ArchiveError):
    kind = ArchiveErrorKind.ENTRY_OUTSIDE_PREFIX

    def __init__(self, name: str, prefix: str):
        super().__init__(f"Entry '{name}' does not start with strip prefix '{prefix}'")
        self.name = name
        self.prefix = prefix


class BufferBoundsViolation(ArchiveError):
    kind = ArchiveErrorKind.BUFFER_BOUNDS_VIOLATION

    def __init__(self, offset: int, length: int, bufferLength: int):
        super().__init__(f"Read of {length} bytes at offset {offset} exceeds buffer of {bufferLength} bytes")
        self.offset = offset
        self.length = length
        self.bufferLength = bufferLength


@dataclass(frozen=True)
class Entry:
    """One central directory record merged with the payload position from its local header"""
    name: str
    isDirectory: bool
    flags: int
    compressionMethod: int
    modTime: int
    modDate: int
    crc32: int
    compressedSize: int
    uncompressedSize: int
    localHeaderOffset: int
    payloadStart: int

    @property
    def payloadEnd(self) -> int:
        return self.payloadStart + self.compressedSize


@dataclass(frozen=True)
class TableOfContents:
    entries: Tuple[Entry, ...]
    topLevelNames: FrozenSet[str]
    hasRootFiles: bool

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def names(self):
        return [entry.name for entry in self.entries]


@dataclass(frozen=True)
class FlattenDecision:
    """Either "no flatten" (stripPrefix is None) or the prefix to strip from every entry"""
    stripPrefix: Optional[str] = None

    @property
    def shouldFlatten(self) -> bool:
        return self.stripPrefix is not None


def checkBounds(data, offset: int, length: int):
    """
    Ensure data[offset:offset + length] lies inside the buffer

    Raises:
        BufferBoundsViolation: If any part of the range is outside the buffer
    """
    if offset < 0 or length < 0 or offset + length > len(data):
        raise BufferBoundsViolation(offset, length, len(data))


def unpackFrom(fmt: struct.Struct, data, offset: int) -> tuple:
    checkBounds(data, offset, fmt.size)
    return fmt.unpack_from(data, offset)


def decodeName(nameBytes: bytes) -> str:
    """Decode an entry name as UTF-8, falling back to the legacy CP437 code page"""
    try:
        return nameBytes.decode('utf-8')
    except UnicodeDecodeError:
        return nameBytes.decode('cp437')


def splitSegments(name: str):
    return [segment for segment in name.split('/') if segment]


def findEndOfCentralDir(data) -> int:
    """
    Locate the EOCD record by a bounded reverse search over the tail of the buffer

    Returns:
        int: Offset of the EOCD signature

    Raises:
        MalformedArchive: If no signature exists inside the search window
    """
    size = len(data)
    if size < END_OF_CENTRAL_DIR_SIZE:
        raise MalformedArchive(
            f"Buffer of {size} bytes is too small for an archive", MalformedReason.EOCD_NOT_FOUND
        )

    windowStart = max(0, size - EOCD_SEARCH_WINDOW)
    # The last possible EOCD starts END_OF_CENTRAL_DIR_SIZE bytes before the end
    windowEnd = size - END_OF_CENTRAL_DIR_SIZE + len(zipfile.stringEndArchive)

    offset = bytes(data[windowStart:windowEnd]).rfind(zipfile.stringEndArchive)
    if offset < 0:
        raise MalformedArchive(
            "End of central directory signature not found", MalformedReason.EOCD_NOT_FOUND
        )

    return windowStart + offset


def readPayloadStart(data, localHeaderOffset: int) -> int:
    """
    Follow a central directory pointer into its local header and compute the first payload byte

    The local header's own name and extra lengths are used, since they may differ from the
    central directory copies.
    """
    (signature, _needed, _flags, _method, _time, _date, _crc, _compressedSize, _uncompressedSize,
     nameLength, extraLength) = unpackFrom(LOCAL_FILE_HEADER_STRUCT, data, localHeaderOffset)

    if signature != LOCAL_FILE_HEADER_SIGNATURE:
        raise MalformedArchive(
            f"Missing local file header at offset {localHeaderOffset}",
            MalformedReason.MISSING_LOCAL_HEADER,
            localHeaderOffset,
        )

    return localHeaderOffset + LOCAL_FILE_HEADER_SIZE + nameLength + extraLength


def parseArchive(data) -> TableOfContents:
    """
    Build the table of contents of a ZIP archive from its central directory

    Compressed payloads are never read; only their positions are computed and checked
    against the buffer length.

    Args:
        data: Archive bytes (bytes, bytearray or memoryview)

    Returns:
        TableOfContents: Entries in central directory order with root-level aggregates

    Raises:
        MalformedArchive: Missing EOCD, bad central directory record or missing local header
        BufferBoundsViolation: A header points outside the buffer
    """
    eocdOffset = findEndOfCentralDir(data)

    (_signature, _disk, _centralDirDisk, _diskEntries, totalEntries,
     centralDirSize, centralDirStart, _commentLength) = unpackFrom(EOCD_STRUCT, data, eocdOffset)

    if (totalEntries == ZIP64_COUNT_MARKER or centralDirSize == ZIP64_SIZE_MARKER
            or centralDirStart == ZIP64_SIZE_MARKER):
        raise MalformedArchive(
            "ZIP64 archives are not supported", MalformedReason.ZIP64_UNSUPPORTED, eocdOffset
        )

    checkBounds(data, centralDirStart, centralDirSize)

    logger.debug(
        f"EOCD at {eocdOffset}: entries={totalEntries}, centralDirStart={centralDirStart}, "
        f"centralDirSize={centralDirSize}"
    )

    entries = []
    topLevelNames = set()
    hasRootFiles = False
    cursor = centralDirStart

    for index in range(totalEntries):
        record = unpackFrom(CENTRAL_DIR_STRUCT, data, cursor)
        (signature, _madeBy, _needed, flags, method, modTime, modDate, crc, compressedSize, uncompressedSize,
         nameLength, extraLength, commentLength, _diskStart, _internalAttr, _externalAttr,
         localHeaderOffset) = record

        if signature != CENTRAL_DIR_SIGNATURE:
            raise MalformedArchive(
                f"Bad central directory signature for entry {index} at offset {cursor}",
                MalformedReason.BAD_CENTRAL_DIRECTORY,
                cursor,
            )

        nameStart = cursor + CENTRAL_DIR_HEADER_SIZE
        checkBounds(data, nameStart, nameLength)
        name = decodeName(bytes(data[nameStart:nameStart + nameLength]))

        cursor = nameStart + nameLength + extraLength + commentLength

        payloadStart = readPayloadStart(data, localHeaderOffset)
        checkBounds(data, payloadStart, compressedSize)

        entry = Entry(
            name=name,
            isDirectory=name.endswith('/'),
            flags=flags,
            compressionMethod=method,
            modTime=modTime,
            modDate=modDate,
            crc32=crc,
            compressedSize=compressedSize,
            uncompressedSize=uncompressedSize,
            localHeaderOffset=localHeaderOffset,
            payloadStart=payloadStart,
        )
        entries.append(entry)

        segments = splitSegments(name)
        if segments:
            topLevelNames.add(segments[0])
            if len(segments) == 1 and not entry.isDirectory:
                hasRootFiles = True

    logger.debug(f"Parsed {len(entries)} entries, topLevelNames={sorted(topLevelNames)}, {hasRootFiles=}")

    return TableOfContents(
        entries=tuple(entries),
        topLevelNames=frozenset(topLevelNames),
        hasRootFiles=hasRootFiles,
    )
