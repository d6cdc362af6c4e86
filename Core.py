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

import sys

from flattener.CLI import configureCLIParser, loadEnvFile, processArgumentsAndCommands
from flattener.Kernel import getLogger
from flattener.Settings import SettingsGetter
from flattener.Utils import flushPrint, sendException

logger = getLogger(__name__)


def setupSettings():
    # .env must be loaded before settings read the environment
    loadEnvFile()
    return SettingsGetter()


def main(argv=None):
    """The main entry point of the flattener CLI"""
    setupSettings()

    parser = configureCLIParser()
    args = parser.parse_args(argv)

    try:
        return processArgumentsAndCommands(args)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        return 0


if __name__ == '__main__':
    try:
        sys.exit(main() or 0)
    except Exception as e:
        sendException(logger, e)
        sys.exit(1)
