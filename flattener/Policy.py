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

from flattener.Archive import FlattenDecision, TableOfContents, MARKER_FILE_NAME

NO_FLATTEN = FlattenDecision()


def decideFlatten(toc: TableOfContents) -> FlattenDecision:
    """
    Decide whether the archive's single top-level folder should be stripped

    Flattening happens only when every entry shares one first path segment and no file
    lives directly at the root. A single-element topLevelNames set is what guarantees that
    every entry, not just the first one, starts with the returned prefix.
    """
    if len(toc.topLevelNames) != 1 or toc.hasRootFiles:
        return NO_FLATTEN

    (topName,) = toc.topLevelNames
    return FlattenDecision(stripPrefix=f'{topName}/')


def hasMarker(toc: TableOfContents, prefix: str = '') -> bool:
    """True if the marker file exists as a regular file exactly at the (prefix-relative) root"""
    markerPath = f'{prefix or ""}{MARKER_FILE_NAME}'
    return any(entry.name == markerPath for entry in toc.entries if not entry.isDirectory)
