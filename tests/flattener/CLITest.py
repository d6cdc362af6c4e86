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

import json
import logging
import os
import shutil
import tempfile
import unittest

from unittest.mock import patch

from tests.ArchiveTestBase import ArchiveTestBase, ICON_BYTES, MAIN_SOURCE, makeZip
from flattener.CLI import (
    configureCLIParser,
    configureLogging,
    loadEnvFile,
    processArgumentsAndCommands,
    runInspect,
)


class LoadEnvFileTest(unittest.TestCase):

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.envPath = os.path.join(self.tempDir, '.env')

    def tearDown(self):
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def testLoadsUnsetVariables(self):
        with open(self.envPath, 'w', encoding='utf-8') as f:
            f.write('# comment\n\nFLATTENER_TEST_A=one\nFLATTENER_TEST_B="two words"\nnot a pair\n=empty\n')

        with patch.dict(os.environ, {}, clear=True):
            count = loadEnvFile(self.envPath)
            self.assertEqual(count, 2)
            self.assertEqual(os.environ['FLATTENER_TEST_A'], 'one')
            self.assertEqual(os.environ['FLATTENER_TEST_B'], 'two words')

    def testEnvironmentTakesPrecedence(self):
        with open(self.envPath, 'w', encoding='utf-8') as f:
            f.write("FLATTENER_TEST_A='from file'\n")

        with patch.dict(os.environ, {'FLATTENER_TEST_A': 'from env'}, clear=True):
            self.assertEqual(loadEnvFile(self.envPath), 0)
            self.assertEqual(os.environ['FLATTENER_TEST_A'], 'from env')

    def testMissingFile(self):
        self.assertEqual(loadEnvFile(os.path.join(self.tempDir, 'missing.env')), 0)

    def testEnvFileVariable(self):
        with open(self.envPath, 'w', encoding='utf-8') as f:
            f.write('FLATTENER_TEST_A=one\n')

        with patch.dict(os.environ, {'FLATTENER_ENV_FILE': self.envPath}, clear=True):
            self.assertEqual(loadEnvFile(), 1)


class ConfigureLoggingTest(unittest.TestCase):

    def testLevelName(self):
        with patch('flattener.CLI.configureGlobalLogLevel') as configure:
            self.assertEqual(configureLogging('debug'), 'debug')
        configure.assert_called_once_with(logging.DEBUG)

    def testInvalidLevelFallsBackToWarning(self):
        with patch('flattener.CLI.configureGlobalLogLevel') as configure:
            configureLogging('LOUD')
        configure.assert_called_once_with(logging.WARNING)

    def testNoLevel(self):
        with patch('flattener.CLI.configureGlobalLogLevel') as configure, patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(configureLogging(None))
        configure.assert_not_called()

    def testEnvironmentLevel(self):
        with patch('flattener.CLI.configureGlobalLogLevel') as configure, \
                patch.dict(os.environ, {'FLATTENER_LOGGING_LEVEL': 'ERROR'}):
            configureLogging(None)
        configure.assert_called_once_with(logging.ERROR)

    def testConfigFile(self):
        tempDir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tempDir, True)
        configPath = os.path.join(tempDir, 'logging.json')
        with open(configPath, 'w') as f:
            json.dump({'version': 1, 'incremental': True, 'loggers': {}}, f)

        with patch('flattener.CLI.logging.config.dictConfig') as dictConfig:
            self.assertEqual(configureLogging(configPath), configPath)
        dictConfig.assert_called_once()


class CLIParserTest(unittest.TestCase):

    def testFlattenArguments(self):
        args = configureCLIParser().parse_args(['--log-level', 'INFO', 'flatten', 'in.zip', '-o', 'out.zip'])

        self.assertEqual(args.command, 'flatten')
        self.assertEqual(args.input, 'in.zip')
        self.assertEqual(args.output, 'out.zip')
        self.assertIsNone(args.name)
        self.assertEqual(args.logLevel, 'INFO')

    def testServeArguments(self):
        args = configureCLIParser().parse_args(['serve', '--port', '9001'])
        self.assertEqual(args.port, 9001)
        self.assertIsNone(args.host)

    def testCommandRequired(self):
        with patch('sys.stderr'):
            with self.assertRaises(SystemExit):
                configureCLIParser().parse_args([])


class CommandTest(ArchiveTestBase):

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.parser = configureCLIParser()

        printPatcher = patch('flattener.CLI.flushPrint')
        self.mockPrint = printPatcher.start()
        self.addCleanup(printPatcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def writeArchive(self, filename, data):
        path = os.path.join(self.tempDir, filename)
        with open(path, 'wb') as f:
            f.write(data)
        return path

    def printed(self):
        return [call.args[0] for call in self.mockPrint.call_args_list]

    def testFlattenNextToInput(self):
        inputPath = self.writeArchive('MyPlugin.zip', self.makePluginZip())

        code = processArgumentsAndCommands(self.parser.parse_args(['flatten', inputPath]))

        self.assertEqual(code, 0)
        outputPath = os.path.join(self.tempDir, 'MyPlugin.sublime-package')
        with open(outputPath, 'rb') as f:
            self.assertEqual(self.readZip(f.read()), {'main.py': MAIN_SOURCE, 'assets/icon.png': ICON_BYTES})
        self.assertTrue(self.printed()[-1].startswith('Flattened '))

    def testFlattenExplicitOutputAndName(self):
        data = makeZip([('main.py', b'1'), ('.no-sublime-package', b'')])
        inputPath = self.writeArchive('in.zip', data)
        outputPath = os.path.join(self.tempDir, 'out.bin')

        code = processArgumentsAndCommands(
            self.parser.parse_args(['flatten', inputPath, '-o', outputPath, '--name', 'Tool'])
        )

        self.assertEqual(code, 0)
        with open(outputPath, 'rb') as f:
            self.assertEqual(f.read(), data)
        self.assertTrue(self.printed()[-1].startswith('Passed through '))

    def testMissingInput(self):
        args = self.parser.parse_args(['flatten', os.path.join(self.tempDir, 'missing.zip')])

        with patch('flattener.CLI.sendException') as mockSend:
            self.assertEqual(processArgumentsAndCommands(args), 1)
        mockSend.assert_called_once()

    def testInspect(self):
        inputPath = self.writeArchive('p.zip', self.makePluginZip())

        self.assertEqual(runInspect(self.parser.parse_args(['inspect', inputPath])), 0)

        output = self.printed()
        self.assertTrue(output[0].startswith('dir '))
        self.assertTrue(output[1].endswith('plugin/main.py'))
        self.assertIn('Top-level names: plugin', output)
        self.assertIn('Root files: False', output)
        self.assertIn('Flatten: plugin/', output)
        self.assertIn('Marker: False', output)

    def testInspectNotAZip(self):
        inputPath = self.writeArchive('page.html', b'<html></html>')

        self.assertEqual(runInspect(self.parser.parse_args(['inspect', inputPath])), 1)
        self.assertTrue(self.printed()[-1].startswith('Not a readable ZIP archive'))


if __name__ == '__main__':
    unittest.main()
