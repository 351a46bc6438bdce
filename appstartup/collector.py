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
Collection of application startup metrics from the Android system logs.
"""

import logging
import tempfile
from shlex import quote

import pexpect
from devlib.collector import CollectorBase, CollectorOutput, CollectorOutputEntry
from devlib.exception import DevlibError, TargetStableError
from devlib.utils.android import LogcatMonitor, get_adb_command

from appstartup.utils import Loggable
from appstartup.events import parse_log_line, logcat_filterspecs, LogParseError, EVENT_TAGS
from appstartup.metrics import StartupClassifier, StartupMetrics


class StartupLogMonitor(LogcatMonitor, Loggable):
    """
    :class:`devlib.utils.android.LogcatMonitor` reading from selected logcat
    buffers and filtering on tags.

    Startup events are only logged in the ``events`` buffer, which is not
    part of the default ones.

    :param target: Android target to monitor
    :type target: appstartup.target.Target

    :param tags: Tags to let through, see
        :func:`appstartup.events.logcat_filterspecs`. All tags are let
        through if omitted.
    :type tags: dict(str, str) or list(str)

    :param buffers: Names of the logcat buffers to read.
    :type buffers: list(str)

    :param logcat_format: Format of the logcat lines, as understood by
        ``logcat -v``.
    :type logcat_format: str
    """

    START_TIMEOUT = 0.5
    """
    Seconds during which logcat is expected to stay alive after being
    spawned.
    """

    def __init__(self, target, tags=None, buffers=('events', 'system'), logcat_format='threadtime'):
        super().__init__(target, logcat_format=logcat_format)
        self.tags = tags
        self.buffers = list(buffers)

    def _buffers_args(self):
        return [
            arg
            for buffer in self.buffers
            for arg in ('-b', buffer)
        ]

    @property
    def logcat_args(self):
        """
        Arguments of the ``logcat`` command run on the device.
        """
        args = ['logcat', *self._buffers_args()]
        if self._logcat_format:
            args.extend(('-v', self._logcat_format))
        if self.tags:
            args.extend(logcat_filterspecs(self.tags))
        return args

    def clear_buffers(self):
        """
        Clear the monitored logcat buffers on the device.
        """
        self.target.execute(' '.join(map(quote, ['logcat', *self._buffers_args(), '-c'])))

    def start(self, outfile=None):
        """
        Start logcat and begin monitoring

        :param outfile: Optional path to file to store all logcat entries
        :type outfile: str

        :raises devlib.exception.TargetStableError: if logcat exits right
            away.
        """
        if outfile:
            self._logfile = open(outfile, 'w')
        else:
            self._logfile = tempfile.NamedTemporaryFile(mode='w')

        self.clear_buffers()

        logcat_cmd = ' '.join(map(quote, self.logcat_args))
        logcat_cmd = get_adb_command(self.target.adb_name, f'shell {quote(logcat_cmd)}', adb_server=self.target.adb_server)

        self.logger.debug(f'logcat command: {logcat_cmd}')
        # Other buffers than "events" can carry any byte sequence
        self._logcat = pexpect.spawn(logcat_cmd, logfile=self._logfile, encoding='utf-8', codec_errors='replace')

        if self._logcat.expect([pexpect.EOF, pexpect.TIMEOUT], timeout=self.START_TIMEOUT) == 0:
            output = self._logcat.before.strip()
            self._logcat.close()
            self._logfile.close()
            raise TargetStableError(f'logcat exited right after starting: {output}')


class AppStartupHelper(CollectorBase):
    """
    Collect application startup metrics.

    :param target: Android target to collect from.
    :type target: appstartup.target.Target

    :param buffers: Logcat buffers to monitor.
    :type buffers: list(str)

    :param logcat_format: Format of the logcat lines.
    :type logcat_format: str

    :param monitor_cls: Class used to monitor logcat, with the same interface
        as :class:`StartupLogMonitor`.
    :type monitor_cls: type

    The metrics are returned by :meth:`get_metrics` as a mapping of metric
    keys to comma-separated values, see
    :class:`appstartup.metrics.StartupMetrics` for the list of keys.

    Example::

        helper = AppStartupHelper(target)
        helper.start_collecting()
        System.launch_package(target, 'com.android.settings')
        System.action_delay()
        metrics = helper.get_metrics()
        helper.stop_collecting()
    """

    DEFAULT_BUFFERS = ('events', 'system')

    LOG_TAGS = {
        **dict.fromkeys(EVENT_TAGS, 'V'),
        # "Start proc" and "Displayed" lines of the system buffer
        'ActivityManager': 'I',
        'ActivityTaskManager': 'I',
    }
    """
    Tags let through by logcat, with their minimum priority.
    """

    def __init__(self, target, buffers=None, logcat_format='threadtime', monitor_cls=StartupLogMonitor):
        super().__init__(target)
        self.logger = logging.getLogger(f'{__name__}.{self.__class__.__qualname__}')
        self.buffers = list(buffers or self.DEFAULT_BUFFERS)
        self.logcat_format = logcat_format
        self._monitor_cls = monitor_cls
        self._monitor = None
        self._collecting = False
        self._lines_seen = 0
        self._classifier = StartupClassifier()
        self._metrics = StartupMetrics()

    @classmethod
    def from_conf(cls, target, conf, **kwargs):
        """
        Build an instance from a :class:`appstartup.target.CollectorConf`.
        """
        kwargs.setdefault('buffers', conf['logcat']['buffers'])
        kwargs.setdefault('logcat_format', conf['logcat']['format'])
        return cls(target, **kwargs)

    @property
    def collecting(self):
        return self._collecting

    @property
    def metrics(self):
        """
        :class:`appstartup.metrics.StartupMetrics` accumulated so far.
        """
        self._update()
        return self._metrics

    def _clear_metrics(self):
        self._lines_seen = 0
        self._classifier.reset()
        self._metrics.clear()

    def reset(self):
        """
        Clear collected data but do not interrupt collection
        """
        if self._collecting:
            self._monitor.clear_log()
        self._clear_metrics()

    def start(self):
        """
        Start collecting startup events.

        If a collection was already running, it is restarted from scratch.
        """
        if self._collecting:
            self.logger.warning('App startup collection already running, restarting it')
            self.stop()

        self._clear_metrics()
        self._monitor = self._monitor_cls(
            self.target,
            tags=self.LOG_TAGS,
            buffers=self.buffers,
            logcat_format=self.logcat_format,
        )
        self._monitor.start(self.output_path)
        self._collecting = True
        self.logger.info('App startup collection started')

    def stop(self):
        """
        Stop collecting startup events.

        The events received so far are still available through
        :meth:`get_metrics`.
        """
        if not self._collecting:
            raise RuntimeError('App startup collection not running, nothing to stop')

        # The log file may be deleted when the monitor stops
        self._update()
        try:
            self._monitor.stop()
        finally:
            self._collecting = False
        self.logger.info('App startup collection stopped')

    def _update(self):
        if not self._collecting:
            return

        lines = self._monitor.get_log()
        # The log was cleared behind our back
        if len(lines) < self._lines_seen:
            self._clear_metrics()

        for line in lines[self._lines_seen:]:
            try:
                event = parse_log_line(line)
            except LogParseError as e:
                self.logger.warning(f'Ignoring malformed startup event: {e}')
                continue

            if event is None:
                self.logger.debug(f'Ignoring log line: {line.rstrip()}')
                continue

            res = self._classifier.feed(event)
            if res is not None:
                self._metrics.add(res)

        self._lines_seen = len(lines)

    def start_collecting(self):
        """
        Start the collection.

        :returns: ``True`` if the collection started, ``False`` otherwise.
        """
        try:
            self.start()
        except (DevlibError, pexpect.ExceptionPexpect, OSError) as e:
            self.logger.error(f'Could not start app startup collection: {e}')
            return False
        else:
            return True

    def get_metrics(self):
        """
        Snapshot of the metrics collected since :meth:`start_collecting`.

        :returns: A ``dict`` of metric keys to comma-separated values.
        """
        return self.metrics.to_dict()

    def stop_collecting(self):
        """
        Stop the collection.

        :returns: ``True`` if the collection was running and stopped
            correctly, ``False`` otherwise.
        """
        try:
            self.stop()
        except RuntimeError as e:
            self.logger.error(str(e))
            return False
        except (DevlibError, pexpect.ExceptionPexpect, OSError) as e:
            self.logger.error(f'Could not stop app startup collection: {e}')
            return False
        else:
            return True

    def get_data(self):
        if self.output_path is None:
            raise RuntimeError("No data collected.")
        return CollectorOutput([CollectorOutputEntry(self.output_path, 'file')])

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
