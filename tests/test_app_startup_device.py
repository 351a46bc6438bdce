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

"""
Application startup collection on a real Android device.

The device is described by the target configuration file pointed by the
``APPSTARTUP_CONF`` environment variable. The tests are skipped otherwise.
"""

import os
from unittest import TestCase, skipUnless

from appstartup.target import Target
from appstartup.collector import AppStartupHelper
from appstartup.device import System, Screen
from appstartup.apps import CalendarHelper, HelperAccessor

from .utils import CALENDAR_PKG, SETTINGS_PKG


COLD_LAUNCH_KEY_TEMPLATE = 'cold_startup_{}'
COLD_LAUNCH_COUNT_PKG_KEY_TEMPLATE = 'cold_startup_count_{}'
COLD_LAUNCH_TOTAL_COUNT_KEY = 'cold_startup_total_count'
WARM_LAUNCH_KEY_TEMPLATE = 'warm_startup_{}'
HOT_LAUNCH_KEY_TEMPLATE = 'hot_startup_{}'
FULLY_DRAWN_KEY_KEYWORD = 'fully_drawn'


def nr_values(metrics, key):
    return len(metrics[key].split(','))


@skipUnless(os.environ.get('APPSTARTUP_CONF'), 'APPSTARTUP_CONF not set, no device to test on')
class TestAppStartupOnDevice(TestCase):

    @classmethod
    def setUpClass(cls):
        cls.target = Target.from_default_conf()

    def setUp(self):
        self.app_startup_helper = AppStartupHelper(self.target)
        self.helper = HelperAccessor(CalendarHelper, self.target)
        # Make sure the apps are starting from the clean state.
        System.clear_app(self.target, CALENDAR_PKG)
        System.clear_app(self.target, SETTINGS_PKG)
        # Make sure display is on and unlocked.
        Screen.wake_up_and_unlock(self.target)

    def tearDown(self):
        if self.app_startup_helper.collecting:
            self.app_startup_helper.stop_collecting()

    def go_home_and_clear(self, pkg):
        System.home(self.target)
        System.action_delay()
        System.clear_app(self.target, pkg)
        System.action_delay()

    def test_app_launch_config(self):
        self.assertTrue(self.app_startup_helper.start_collecting())
        self.assertTrue(self.app_startup_helper.stop_collecting())

    def test_empty_app_launch_metric(self):
        self.assertTrue(self.app_startup_helper.start_collecting())
        self.assertEqual(self.app_startup_helper.get_metrics(), {})
        self.assertTrue(self.app_startup_helper.stop_collecting())

    def test_single_cold_launch_metric(self):
        self.assertTrue(self.app_startup_helper.start_collecting())
        self.helper.get().open()
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        # A metric key for the app cold launching should exist, and should
        # only hold one value.
        cold_key = COLD_LAUNCH_KEY_TEMPLATE.format(CALENDAR_PKG)
        count_key = COLD_LAUNCH_COUNT_PKG_KEY_TEMPLATE.format(CALENDAR_PKG)
        self.assertIn(cold_key, metrics)
        self.assertEqual(nr_values(metrics, cold_key), 1)
        self.assertEqual(int(metrics[count_key]), 1)
        self.assertEqual(int(metrics[COLD_LAUNCH_TOTAL_COUNT_KEY]), 1)
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.helper.get().exit()

    def test_multiple_cold_launch_metric(self):
        self.assertTrue(self.app_startup_helper.start_collecting())
        self.helper.get().open()
        System.action_delay()
        self.helper.get().exit()
        System.clear_app(self.target, CALENDAR_PKG)
        self.helper.get().open()
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        cold_key = COLD_LAUNCH_KEY_TEMPLATE.format(CALENDAR_PKG)
        count_key = COLD_LAUNCH_COUNT_PKG_KEY_TEMPLATE.format(CALENDAR_PKG)
        self.assertIn(cold_key, metrics)
        self.assertEqual(nr_values(metrics, cold_key), 2)
        self.assertEqual(int(metrics[count_key]), 2)
        self.assertEqual(int(metrics[COLD_LAUNCH_TOTAL_COUNT_KEY]), 2)
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.helper.get().exit()

    def test_different_app_cold_launch_metric(self):
        self.assertTrue(self.app_startup_helper.start_collecting())

        # Calendar
        self.helper.get().open()
        System.action_delay()
        self.helper.get().exit()
        System.clear_app(self.target, CALENDAR_PKG)

        # Settings
        System.launch_package(self.target, SETTINGS_PKG)
        System.action_delay()
        self.go_home_and_clear(SETTINGS_PKG)

        metrics = self.app_startup_helper.get_metrics()
        for pkg in (CALENDAR_PKG, SETTINGS_PKG):
            cold_key = COLD_LAUNCH_KEY_TEMPLATE.format(pkg)
            count_key = COLD_LAUNCH_COUNT_PKG_KEY_TEMPLATE.format(pkg)
            self.assertIn(cold_key, metrics)
            self.assertEqual(nr_values(metrics, cold_key), 1)
            self.assertEqual(int(metrics[count_key]), 1)
        self.assertEqual(int(metrics[COLD_LAUNCH_TOTAL_COUNT_KEY]), 2)
        self.assertTrue(self.app_startup_helper.stop_collecting())

    def test_warm_launch_metric(self):
        # Launch the app once and exit it so it resides in memory.
        self.helper.get().open()
        System.action_delay()
        # Press home and clear the cache explicitly.
        System.home(self.target)
        System.clear_cache(self.target)
        System.action_delay()
        # Start the collection here to test warm launch.
        self.assertTrue(self.app_startup_helper.start_collecting())
        self.helper.get().open()
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        warm_key = WARM_LAUNCH_KEY_TEMPLATE.format(CALENDAR_PKG)
        self.assertIn(warm_key, metrics)
        self.assertEqual(nr_values(metrics, warm_key), 1)
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.helper.get().exit()

    def test_hot_launch_metric(self):
        # Settings is lightweight enough to trigger a hot launch.
        System.launch_package(self.target, SETTINGS_PKG)
        System.home(self.target)
        self.assertTrue(self.app_startup_helper.start_collecting())
        System.action_delay()
        System.launch_package(self.target, SETTINGS_PKG)
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        hot_key = HOT_LAUNCH_KEY_TEMPLATE.format(SETTINGS_PKG)
        self.assertIn(hot_key, metrics)
        self.assertEqual(nr_values(metrics, hot_key), 1)
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.go_home_and_clear(SETTINGS_PKG)

    def fully_drawn_keys(self, metrics):
        return [
            key for key in metrics
            if FULLY_DRAWN_KEY_KEYWORD in key and SETTINGS_PKG in key
        ]

    def test_single_launch_startup_fully_drawn_metric(self):
        # Settings calls reportFullyDrawn()
        self.assertTrue(self.app_startup_helper.start_collecting())
        System.launch_package(self.target, SETTINGS_PKG)
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        self.assertTrue(self.fully_drawn_keys(metrics))
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.go_home_and_clear(SETTINGS_PKG)

    def test_multiple_launch_startup_fully_drawn_metric(self):
        # Settings only reports being fully drawn from onCreate(), so cold
        # launch it twice.
        self.assertTrue(self.app_startup_helper.start_collecting())
        System.launch_package(self.target, SETTINGS_PKG)
        System.action_delay()
        self.go_home_and_clear(SETTINGS_PKG)
        System.launch_package(self.target, SETTINGS_PKG)
        System.action_delay()
        metrics = self.app_startup_helper.get_metrics()
        keys = self.fully_drawn_keys(metrics)
        self.assertTrue(keys)
        for key in keys:
            self.assertEqual(nr_values(metrics, key), 2)
        self.assertTrue(self.app_startup_helper.stop_collecting())
        self.go_home_and_clear(SETTINGS_PKG)

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
