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

import logging
import os
import unittest

from unittest.mock import patch

from sentry_sdk.integrations.logging import SentryHandler

from flattener.Kernel import PUBLIC_VERSION, Singleton, configureGlobalLogLevel, getLogger, initSentry


class GetLoggerTest(unittest.TestCase):

    def testAdapterCarriesVersion(self):
        logger = getLogger('flattener.test.kernel')

        self.assertIsInstance(logger, logging.LoggerAdapter)
        self.assertEqual(logger.extra, {'version': PUBLIC_VERSION})

    def testSentryHandlerAddedOnce(self):
        getLogger('flattener.test.once')
        getLogger('flattener.test.once')

        handlers = logging.getLogger('flattener.test.once').handlers
        self.assertEqual(sum(isinstance(h, SentryHandler) for h in handlers), 1)

    def testSentryNotInitializedWithoutDSN(self):
        with patch.dict(os.environ, {}, clear=True), patch('flattener.Kernel.sentry_sdk.init') as sentryInit:
            self.assertFalse(initSentry())
        sentryInit.assert_not_called()


class ConfigureGlobalLogLevelTest(unittest.TestCase):

    def setUp(self):
        rootLogger = logging.getLogger()
        self.addCleanup(rootLogger.setLevel, rootLogger.level)

    def testSetsRootLevel(self):
        configureGlobalLogLevel(logging.ERROR)
        self.assertEqual(logging.getLogger().level, logging.ERROR)


class SingletonTest(unittest.TestCase):

    def testSingleInstanceAndInitializeOnce(self):

        class Counter(Singleton):

            def initialize(self, start=0):
                self.value = start

        self.addCleanup(Counter.resetInstance)

        first = Counter(start=5)
        second = Counter(start=9)

        self.assertIs(first, second)
        self.assertEqual(second.value, 5)
        self.assertIs(Counter.getInstance(), first)

    def testResetInstance(self):

        class Thing(Singleton):
            pass

        first = Thing.getInstance()
        Thing.resetInstance()
        self.assertIsNot(Thing.getInstance(), first)
        Thing.resetInstance()


if __name__ == '__main__':
    unittest.main()
