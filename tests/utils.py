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

from unittest import TestCase
import re
import tempfile
import shutil

from appstartup.events import split_log_line, LOG_PRIORITIES


CALENDAR_PKG = 'com.google.android.calendar'
SETTINGS_PKG = 'com.android.settings'

CALENDAR_COMPONENT = f'{CALENDAR_PKG}/com.android.calendar.AllInOneActivity'


def logcat_line(time, pid, tag, payload, tid=None):
    """
    Build a logcat line in ``threadtime`` format.
    """
    tid = pid if tid is None else tid
    return f'10-18 {time}  {pid:>4}  {tid:>4} I {tag}: {payload}\n'


def cold_launch_lines(pkg=CALENDAR_PKG, activity='com.android.calendar.AllInOneActivity', delay_ms=545, time='04:50:12', pid=5123):
    return [
        logcat_line(f'{time}.100', 1000, 'am_proc_start', f'[0,{pid},10110,{pkg},top-activity,{{{pkg}/{activity}}}]', tid=1020),
        logcat_line(f'{time}.200', pid, 'wm_on_create_called', f'[94847512,{activity},performCreate]'),
        logcat_line(f'{time}.650', 1000, 'wm_activity_launch_time', f'[0,94847512,{pkg}/{activity},{delay_ms}]', tid=1050),
    ]


def warm_launch_lines(pkg=CALENDAR_PKG, activity='com.android.calendar.AllInOneActivity', delay_ms=230, time='04:51:00', pid=5123):
    return [
        logcat_line(f'{time}.200', pid, 'wm_on_create_called', f'[4312077,{activity},performCreate]'),
        logcat_line(f'{time}.450', 1000, 'wm_activity_launch_time', f'[0,4312077,{pkg}/{activity},{delay_ms}]', tid=1050),
    ]


def hot_launch_lines(pkg=SETTINGS_PKG, activity='.Settings', delay_ms=62, time='04:52:00', pid=6000):
    full_activity = pkg + activity if activity.startswith('.') else activity
    return [
        logcat_line(f'{time}.100', pid, 'wm_on_restart_called', f'[1234,{full_activity},performRestartActivity]'),
        logcat_line(f'{time}.200', 1000, 'wm_activity_launch_time', f'[0,1234,{pkg}/{activity},{delay_ms}]', tid=1050),
    ]


def fully_drawn_lines(pkg=SETTINGS_PKG, activity='.Settings', time_ms=823, time='04:53:00'):
    return [
        logcat_line(f'{time}.900', 1000, 'wm_activity_fully_drawn_time', f'[0,1234,{pkg}/{activity},{time_ms}]', tid=1050),
    ]


def logcat_admits(filterspecs, line):
    """
    Tell whether ``logcat`` would print ``line`` with the given filter
    specifications.

    The specification naming the tag of the line applies, the ``*`` one
    otherwise. Without any, everything from the ``V`` priority is printed.
    """
    entry = split_log_line(line)
    if entry is None:
        return False

    levels = dict(spec.rsplit(':', 1) for spec in filterspecs)
    level = levels.get(entry['tag'], levels.get('*', 'V'))
    return LOG_PRIORITIES.index(entry['priority']) >= LOG_PRIORITIES.index(level) and level != 'S'


class FakeTarget:
    """
    Stand-in for :class:`devlib.target.AndroidTarget` recording the executed
    commands.

    :param outputs: Mapping of regexes to the output of matching commands.
    :type outputs: dict(str, str or list(str))

    When the output is a list, consecutive matching commands get consecutive
    items, the last one being repeated.
    """

    adb_name = 'emulator-5554'
    adb_server = None

    def __init__(self, outputs=None, sdk_version=30):
        self.outputs = dict(outputs or {})
        self.sdk_version = sdk_version
        self.commands = []
        self.root_commands = []

    def execute(self, command, as_root=False, **kwargs):
        self.commands.append(command)
        if as_root:
            self.root_commands.append(command)

        for regex, output in self.outputs.items():
            if re.search(regex, command):
                if isinstance(output, list):
                    return output.pop(0) if len(output) > 1 else output[0]
                return output
        return ''

    def get_sdk_version(self):
        return self.sdk_version


class LogFeed:
    """
    Lines that will be seen by a :class:`FakeLogMonitor`.
    """
    def __init__(self, lines=None):
        self.lines = list(lines or [])
        self.monitors = []

    def push(self, lines):
        self.lines.extend(lines)

    def monitor_cls(self, target, **kwargs):
        monitor = FakeLogMonitor(self, target, **kwargs)
        self.monitors.append(monitor)
        return monitor


class FakeLogMonitor:
    """
    Stand-in for :class:`appstartup.collector.StartupLogMonitor` reading from
    a :class:`LogFeed`.
    """
    def __init__(self, feed, target, tags=None, buffers=None, logcat_format=None):
        self.feed = feed
        self.target = target
        self.tags = tags
        self.buffers = buffers
        self.logcat_format = logcat_format
        self.outfile = None
        self.started = False
        self.stopped = False

    def start(self, outfile=None):
        self.outfile = outfile
        self.started = True
        # A new monitor only sees the lines logged after it started
        self.feed.lines.clear()

    def stop(self):
        self.stopped = True

    def get_log(self):
        return list(self.feed.lines)

    def clear_log(self):
        self.feed.lines.clear()


class StorageTestCase(TestCase):
    """
    A base class for tests that also provides a directory
    """
    def setUp(self):
        self.res_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.res_dir)

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
