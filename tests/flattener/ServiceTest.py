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

import unittest

from tests.ArchiveTestBase import ArchiveTestBase, ICON_BYTES, MAIN_SOURCE, RawEntry, buildRawZip, makeZip
from flattener.Service import PackageResult, buildPackage, makeFilename, sanitizePackageName


class BuildPackageTest(ArchiveTestBase):

    def testFlattensSingleFolder(self):
        result = buildPackage(self.makePluginZip(), 'MyPlugin')

        self.assertIsInstance(result, PackageResult)
        self.assertTrue(result.flattened)
        self.assertFalse(result.useZipExtension)
        self.assertEqual(result.filename, 'MyPlugin.sublime-package')
        self.assertEqual(result.entryCount, 3)
        self.assertEqual(self.readZip(result.content), {'main.py': MAIN_SOURCE, 'assets/icon.png': ICON_BYTES})

    def testRootFilesPassThrough(self):
        data = makeZip([('main.py', b'1'), ('readme.txt', b'2')])
        result = buildPackage(data, 'MyPlugin')

        self.assertFalse(result.flattened)
        self.assertEqual(result.content, data)
        self.assertEqual(result.filename, 'MyPlugin.sublime-package')

    def testMarkerInsideFolderSelectsZip(self):
        data = makeZip([('plugin/main.py', b'1'), ('plugin/.no-sublime-package', b'')])
        result = buildPackage(data, 'MyPlugin')

        self.assertTrue(result.flattened)
        self.assertTrue(result.useZipExtension)
        self.assertEqual(result.filename, 'MyPlugin.zip')
        self.assertEqual(set(self.readZip(result.content)), {'main.py', '.no-sublime-package'})

    def testMarkerAtRootSelectsZip(self):
        data = makeZip([('main.py', b'1'), ('.no-sublime-package', b'')])
        result = buildPackage(data, 'MyPlugin')

        self.assertFalse(result.flattened)
        self.assertEqual(result.content, data)
        self.assertEqual(result.filename, 'MyPlugin.zip')

    def testNestedMarkerIgnored(self):
        data = makeZip([('plugin/main.py', b'1'), ('plugin/sub/.no-sublime-package', b'')])
        self.assertEqual(buildPackage(data, 'MyPlugin').filename, 'MyPlugin.sublime-package')

    def testNotAZipPassesThrough(self):
        data = b'<html><body>Not Found</body></html>'
        result = buildPackage(data, 'MyPlugin')

        self.assertFalse(result.flattened)
        self.assertEqual(result.content, data)
        self.assertEqual(result.filename, 'MyPlugin.sublime-package')
        self.assertEqual(result.entryCount, 0)

    def testTruncatedArchivePassesThrough(self):
        data = self.makePluginZip()
        truncated = data[:40] + data[-22:]

        result = buildPackage(truncated, 'MyPlugin')
        self.assertFalse(result.flattened)
        self.assertEqual(result.content, truncated)

    def testRebuildFailureServesOriginal(self):
        """An entry outside the chosen prefix falls back to the original bytes"""
        data, _ = buildRawZip([RawEntry('/plugin/a.py', b'1'), RawEntry('plugin/b.py', b'2')])
        result = buildPackage(data, 'MyPlugin')

        self.assertFalse(result.flattened)
        self.assertEqual(result.content, data)
        self.assertEqual(result.entryCount, 2)

    def testOversizedRenamedEntryServesOriginal(self):
        """A legacy name too long once written as UTF-8 falls back to the original bytes"""
        data, _ = buildRawZip([RawEntry(b'plugin/' + b'\xff' * 40000, b'x')])
        result = buildPackage(data, 'P')

        self.assertFalse(result.flattened)
        self.assertEqual(result.content, data)
        self.assertEqual(result.filename, 'P.sublime-package')

    def testDefaultName(self):
        self.assertEqual(buildPackage(self.makePluginZip()).filename, 'Package.sublime-package')

    def testBytearrayInput(self):
        data = makeZip([('main.py', b'1')])
        result = buildPackage(bytearray(data), 'X')
        self.assertIsInstance(result.content, bytes)
        self.assertEqual(result.content, data)


class FilenameTest(unittest.TestCase):

    def testMakeFilename(self):
        self.assertEqual(makeFilename('Emmet', False), 'Emmet.sublime-package')
        self.assertEqual(makeFilename('Emmet', True), 'Emmet.zip')

    def testSanitizeKeepsOrdinaryNames(self):
        self.assertEqual(sanitizePackageName('Package Control'), 'Package Control')
        self.assertEqual(sanitizePackageName('A-File_Icon 2'), 'A-File_Icon 2')

    def testSanitizeHeaderBreakingCharacters(self):
        self.assertEqual(sanitizePackageName('a"b'), 'a_b')
        self.assertEqual(sanitizePackageName('evil\r\nSet-Cookie: x'), 'evil__Set-Cookie_ x')
        self.assertEqual(sanitizePackageName('../../etc/passwd'), '_.._etc_passwd')

    def testSanitizeEmptyFallsBackToDefault(self):
        self.assertEqual(sanitizePackageName(''), 'Package')
        self.assertEqual(sanitizePackageName(None), 'Package')
        self.assertEqual(sanitizePackageName('...'), 'Package')


if __name__ == '__main__':
    unittest.main()
