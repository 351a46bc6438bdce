# SPDX-License-Identifier: Apache-2.0
#
# Copyright (C) 2024, ARM Limited and contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you may
# not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
# WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

import os
import json
import logging
from unittest import TestCase

import pandas as pd
from ruamel.yaml import YAML

from appstartup.collector import AppStartupHelper
from appstartup._cli_tools.appstartup_measure import measure, write_output

from .utils import (
    FakeTarget, LogFeed, StorageTestCase, cold_launch_lines, CALENDAR_PKG,
)


class LaunchingTarget(FakeTarget):
    """
    Logs a cold launch of the calendar every time an application is launched.
    """
    def __init__(self, feed, **kwargs):
        super().__init__(**kwargs)
        self.feed = feed

    def execute(self, command, **kwargs):
        if command.startswith('monkey '):
            self.feed.push(cold_launch_lines())
        return super().execute(command, **kwargs)


class TestMeasure(TestCase):
    def setUp(self):
        self.feed = LogFeed()
        self.target = LaunchingTarget(self.feed)
        self.helper = AppStartupHelper(self.target, monitor_cls=self.feed.monitor_cls)
        self.logger = logging.getLogger('appstartup-measure')

    def test_cold(self):
        metrics, df = measure(
            logger=self.logger,
            target=self.target,
            helper=self.helper,
            package=CALENDAR_PKG,
            mode='cold',
            iterations=2,
            clear_cache=True,
            delay=0,
        )
        self.assertEqual(metrics[f'cold_startup_count_{CALENDAR_PKG}'], '2')
        self.assertEqual(len(df), 2)
        self.assertEqual(self.target.commands.count(f'am force-stop {CALENDAR_PKG}'), 2)
        self.assertEqual(len(self.target.root_commands), 2)
        self.assertFalse(self.helper.collecting)
        self.assertEqual(self.target.commands[-1], 'input keyevent KEYCODE_HOME')

    def test_hot(self):
        measure(
            logger=self.logger,
            target=self.target,
            helper=self.helper,
            package=CALENDAR_PKG,
            mode='hot',
            iterations=1,
            clear_cache=False,
            delay=0,
        )
        launches = [
            cmd for cmd in self.target.commands
            if cmd.startswith('monkey ')
        ]
        # One launch to make the application resident, then the measured one
        self.assertEqual(len(launches), 2)
        self.assertEqual(self.target.root_commands, [])

    def test_wait_foreground(self):
        self.target.outputs['dumpsys window'] = f'mCurrentFocus=Window{{3c8f1b2 u0 {CALENDAR_PKG}/.Main}}\n'
        metrics, _ = measure(
            logger=self.logger,
            target=self.target,
            helper=self.helper,
            package=CALENDAR_PKG,
            mode='cold',
            iterations=1,
            clear_cache=False,
            delay=0,
            wait_timeout=1,
            wait_period=0,
        )
        self.assertIn('dumpsys window windows', self.target.commands)
        self.assertEqual(metrics['cold_startup_total_count'], '1')

    def test_wait_timeout(self):
        with self.assertRaises(TimeoutError):
            measure(
                logger=self.logger,
                target=self.target,
                helper=self.helper,
                package=CALENDAR_PKG,
                mode='cold',
                iterations=1,
                clear_cache=False,
                delay=0,
                wait_timeout=0,
            )
        self.assertFalse(self.helper.collecting)

    def test_invalid_mode(self):
        with self.assertRaises(ValueError):
            measure(
                logger=self.logger,
                target=self.target,
                helper=self.helper,
                package=CALENDAR_PKG,
                mode='lukewarm',
                iterations=1,
                clear_cache=False,
                delay=0,
            )
        self.assertFalse(self.helper.collecting)


class TestWriteOutput(StorageTestCase):
    METRICS = {
        f'cold_startup_{CALENDAR_PKG}': '545,612',
        'cold_startup_total_count': '2',
    }

    def setUp(self):
        super().setUp()
        self.df = pd.DataFrame.from_records(
            [
                dict(package=CALENDAR_PKG, component='a/b', type='cold', time_ms=545, timestamp=1.0),
                dict(package=CALENDAR_PKG, component='a/b', type='cold', time_ms=612, timestamp=2.0),
            ],
        )

    def test_json(self):
        path = os.path.join(self.res_dir, 'metrics.json')
        write_output(self.METRICS, self.df, path)
        with open(path) as f:
            self.assertEqual(json.load(f), self.METRICS)

    def test_yaml(self):
        path = os.path.join(self.res_dir, 'metrics.yml')
        write_output(self.METRICS, self.df, path)
        with open(path) as f:
            self.assertEqual(dict(YAML(typ='safe').load(f)), self.METRICS)

    def test_csv(self):
        path = os.path.join(self.res_dir, 'metrics.csv')
        write_output(self.METRICS, self.df, path)
        df = pd.read_csv(path)
        self.assertEqual(list(df['time_ms']), [545, 612])

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            write_output(self.METRICS, self.df, os.path.join(self.res_dir, 'metrics.txt'))

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
