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

import argparse
import json
import os
import logging
import logging.config

from flattener.Archive import ArchiveError, parseArchive
from flattener.Kernel import LOG_LEVEL_MAPPING, PUBLIC_VERSION, getLogger, configureGlobalLogLevel
from flattener.Policy import decideFlatten, hasMarker
from flattener.Server import createServer
from flattener.Service import buildPackage
from flattener.Settings import DEFAULT_PACKAGE_NAME, SettingsGetter
from flattener.Utils import flushPrint, formatSize, getAvailablePort, getEnv, sendException

logger = getLogger(__name__)


def loadEnvFile(envFilePath=None):
    """
    Load environment variables from a .env file (FLATTENER_ENV_FILE or ./.env).
    Only sets variables that are not already defined in os.environ.

    Returns:
        int: Number of variables loaded
    """
    envFilePath = envFilePath or getEnv('FLATTENER_ENV_FILE', os.path.join(os.getcwd(), '.env'))

    if not os.path.isfile(envFilePath):
        return 0

    loadedCount = 0
    with open(envFilePath, 'r', encoding='utf-8') as f:
        for lineNum, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                logger.warning(f'.env line {lineNum}: Invalid format (missing =): {line}')
                continue

            key, _, value = line.partition('=')
            key = key.strip()
            value = value.strip()

            if not key:
                logger.warning(f'.env line {lineNum}: Empty key')
                continue

            # Remove quotes if present (both single and double)
            if (value.startswith('"') and value.endswith('"')) or \
               (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]

            # Environment takes precedence
            if key not in os.environ:
                os.environ[key] = value
                loadedCount += 1
            else:
                logger.debug(f'.env: Skipped {key} (already set in environment)')

    logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')
    return loadedCount


def configureLogging(logLevel):
    """Configure logging from --log-level or FLATTENER_LOGGING_LEVEL

    Both may be a level name (DEBUG, INFO, WARNING, ERROR) or a path to a logging
    configuration JSON file for logging.config.dictConfig.
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    # Priority: CLI argument > environment variable > None (no change)
    if logLevel is None:
        logLevel = getEnv('FLATTENER_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()

    return logLevel


def configureCLIParser():
    parser = argparse.ArgumentParser(
        prog='flattener',
        description='Strip the redundant top-level folder from ZIP packages without recompressing them.',
    )
    parser.add_argument(
        '--log-level',
        dest='logLevel',
        default=None,
        help='Logging level (DEBUG, INFO, WARNING, ERROR) or path to a logging config JSON file',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {PUBLIC_VERSION}')

    subparsers = parser.add_subparsers(dest='command', required=True)

    serveParser = subparsers.add_parser('serve', help='Run the flattening HTTP service')
    serveParser.add_argument('--host', default=None, help='Address to bind (default: FLATTENER_HOST or 127.0.0.1)')
    serveParser.add_argument('--port', type=int, default=None, help='Port to bind (default: FLATTENER_PORT or 8787)')

    flattenParser = subparsers.add_parser('flatten', help='Flatten a local archive')
    flattenParser.add_argument('input', help='Path to the source ZIP archive')
    flattenParser.add_argument('-o', '--output', default=None, help='Output path (default: next to the input)')
    flattenParser.add_argument('--name', default=None, help='Package name used for the output filename')

    inspectParser = subparsers.add_parser('inspect', help='Print the table of contents and flatten decision')
    inspectParser.add_argument('input', help='Path to the ZIP archive')

    return parser


def readArchive(path):
    with open(path, 'rb') as f:
        return f.read()


def runServe(args):
    settingsGetter = SettingsGetter.getInstance()
    host = args.host or settingsGetter.host
    port = getAvailablePort(args.port if args.port is not None else settingsGetter.port)

    server = createServer(host, port, settingsGetter=settingsGetter)
    flushPrint(f'Serving on http://{host}:{server.port}/?url=<archive-url>&name=<package-name>')
    try:
        server.start()
    finally:
        server.server_close()
    return 0


def runFlatten(args):
    data = readArchive(args.input)

    name = args.name or os.path.splitext(os.path.basename(args.input))[0] or DEFAULT_PACKAGE_NAME
    result = buildPackage(data, name)

    outputPath = args.output or os.path.join(os.path.dirname(os.path.abspath(args.input)), result.filename)
    with open(outputPath, 'wb') as f:
        f.write(result.content)

    flushPrint(f"{'Flattened' if result.flattened else 'Passed through'} {args.input} -> {outputPath} "
               f"({formatSize(len(result.content))})")
    return 0


def runInspect(args):
    data = readArchive(args.input)

    try:
        toc = parseArchive(data)
    except ArchiveError as e:
        flushPrint(f'Not a readable ZIP archive: {e}')
        return 1

    for entry in toc:
        kind = 'dir ' if entry.isDirectory else 'file'
        flushPrint(f'{kind} {entry.compressedSize:>10} {entry.uncompressedSize:>10} {entry.name}')

    decision = decideFlatten(toc)
    flushPrint(f'Top-level names: {", ".join(sorted(toc.topLevelNames)) or "-"}')
    flushPrint(f'Root files: {toc.hasRootFiles}')
    flushPrint(f'Flatten: {decision.stripPrefix if decision.shouldFlatten else "no"}')
    flushPrint(f'Marker: {hasMarker(toc, decision.stripPrefix or "")}')
    return 0


COMMANDS = {
    'serve': runServe,
    'flatten': runFlatten,
    'inspect': runInspect,
}


def processArgumentsAndCommands(args):
    configureLogging(args.logLevel)

    try:
        return COMMANDS[args.command](args)
    except OSError as e:
        sendException(logger, e, errorPrefix=f"Unable to process '{getattr(args, 'input', args.command)}'")
        return 1
