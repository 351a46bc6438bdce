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
Classification of startup events and accumulation of startup metrics.
"""

import enum
from collections import namedtuple, OrderedDict

import pandas as pd

from appstartup.utils import Loggable
from appstartup.events import (
    PROCESS_START, ACTIVITY_CREATE, ACTIVITY_RESTART, LAUNCH_TIME, FULLY_DRAWN,
)


COLD_STARTUP = 'cold_startup'
WARM_STARTUP = 'warm_startup'
HOT_STARTUP = 'hot_startup'
COUNT = 'count'
TOTAL_COUNT = 'total_count'
FULLY_DRAWN_KEYWORD = 'fully_drawn'
STARTUP_FULLY_DRAWN = f'startup_{FULLY_DRAWN_KEYWORD}'
KEY_SEPARATOR = '_'
VALUE_SEPARATOR = ','


def construct_key(*parts):
    """
    Join metric key parts with ``_``.

    >>> construct_key('cold_startup', 'count', 'com.android.settings')
    'cold_startup_count_com.android.settings'
    """
    return KEY_SEPARATOR.join(parts)


class StartupType(enum.Enum):
    """
    Kind of application startup.
    """

    COLD = 'cold'
    """No process existed for the application."""

    WARM = 'warm'
    """The process existed but the activity had to be created."""

    HOT = 'hot'
    """The activity already existed and was brought to the foreground."""

    @property
    def key_prefix(self):
        return f'{self.value}_startup'


class AppStartupEvent(namedtuple('AppStartupEvent', 'package component startup_type windows_drawn_delay_ms timestamp')):
    """
    An application startup, as reported when the first frame is drawn.
    """
    __slots__ = ()


class FullyDrawnEvent(namedtuple('FullyDrawnEvent', 'package component time_ms timestamp')):
    """
    An application reported it finished drawing with
    ``Activity.reportFullyDrawn()``.
    """
    __slots__ = ()


class StartupClassifier(Loggable):
    """
    Turn a stream of :class:`appstartup.events.LogEvent` into startup events.

    The startup type is inferred from the events logged since the previous
    launch of the same package:

        * a process start for an activity makes it a cold startup,
        * otherwise, the creation of the launched activity makes it a warm
          startup,
        * otherwise it is a hot startup.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self._started_packages = set()
        self._created_classes = set()

    def feed(self, event):
        """
        Process one event.

        :returns: An :class:`AppStartupEvent` or :class:`FullyDrawnEvent` when
            ``event`` completes one, ``None`` otherwise.
        """
        kind = event.kind
        if kind == PROCESS_START:
            # Processes started for services or broadcast receivers do not
            # make the next launch a cold one.
            if 'activity' in event.hosting_type:
                self._started_packages.add(event.package)
            return None
        elif kind == ACTIVITY_CREATE:
            self._created_classes.add(event.class_name)
            return None
        elif kind == ACTIVITY_RESTART:
            self.logger.debug(f'Activity restarted: {event.class_name}')
            return None
        elif kind == LAUNCH_TIME:
            return self._launched(event)
        elif kind == FULLY_DRAWN:
            return FullyDrawnEvent(
                package=event.package,
                component=event.component,
                time_ms=event.time_ms,
                timestamp=event.timestamp,
            )
        else:
            raise ValueError(f'Unhandled event kind: {kind}')

    def _launched(self, event):
        package = event.package
        class_name = event.class_name

        if package in self._started_packages:
            startup_type = StartupType.COLD
        elif class_name in self._created_classes:
            startup_type = StartupType.WARM
        else:
            startup_type = StartupType.HOT

        self._started_packages.discard(package)
        self._created_classes = {
            name
            for name in self._created_classes
            if not name.startswith(package + '.')
        }
        self._created_classes.discard(class_name)

        return AppStartupEvent(
            package=package,
            component=event.component,
            startup_type=startup_type,
            windows_drawn_delay_ms=event.time_ms,
            timestamp=event.timestamp,
        )

    def classify(self, events):
        """
        Process an iterable of events and yield the startup events.
        """
        for event in events:
            res = self.feed(event)
            if res is not None:
                yield res


class StartupMetrics(Loggable):
    """
    Accumulate startup events in a mapping of metric keys to comma-separated
    values.

    The following keys are populated:

        * ``cold_startup_<package>``, ``warm_startup_<package>``,
          ``hot_startup_<package>``: windows drawn delay in milliseconds of
          each startup.
        * ``cold_startup_count_<package>``: number of cold startups of the
          package.
        * ``cold_startup_total_count``: number of cold startups of all
          packages.
        * ``startup_fully_drawn_<package>``: fully drawn time in
          milliseconds.

    Keys only appear once a value is recorded for them.
    """

    def __init__(self):
        self._values = OrderedDict()
        self._counts = OrderedDict()
        self._startups = []
        self._fully_drawn = []

    def clear(self):
        self._values.clear()
        self._counts.clear()
        self._startups.clear()
        self._fully_drawn.clear()

    def _append(self, key, value):
        self._values.setdefault(key, []).append(str(value))

    def _increment(self, key):
        self._counts[key] = self._counts.get(key, 0) + 1

    def add(self, event):
        """
        Record an :class:`AppStartupEvent` or a :class:`FullyDrawnEvent`.
        """
        if isinstance(event, AppStartupEvent):
            self._startups.append(event)
            prefix = event.startup_type.key_prefix
            self._append(construct_key(prefix, event.package), event.windows_drawn_delay_ms)
            if event.startup_type == StartupType.COLD:
                self._increment(construct_key(COLD_STARTUP, COUNT, event.package))
                self._increment(construct_key(COLD_STARTUP, TOTAL_COUNT))
            self.logger.debug(f'{event.startup_type.value} startup of {event.component}: {event.windows_drawn_delay_ms}ms')
        elif isinstance(event, FullyDrawnEvent):
            self._fully_drawn.append(event)
            self._append(construct_key(STARTUP_FULLY_DRAWN, event.package), event.time_ms)
            self.logger.debug(f'{event.component} fully drawn: {event.time_ms}ms')
        else:
            raise TypeError(f'Unsupported event type: {event.__class__.__qualname__}')

    def update(self, events):
        for event in events:
            self.add(event)

    def to_dict(self):
        """
        Snapshot of the metrics as a ``dict`` of metric keys to strings.
        """
        metrics = {
            key: VALUE_SEPARATOR.join(values)
            for key, values in self._values.items()
        }
        metrics.update(
            (key, str(count))
            for key, count in self._counts.items()
        )
        return metrics

    @property
    def startups(self):
        """
        List of the recorded :class:`AppStartupEvent`.
        """
        return list(self._startups)

    @property
    def fully_drawn(self):
        """
        List of the recorded :class:`FullyDrawnEvent`.
        """
        return list(self._fully_drawn)

    @property
    def df(self):
        """
        :class:`pandas.DataFrame` with one row per recorded event and the
        following columns:

            * ``package``
            * ``component``
            * ``type``: ``cold``, ``warm``, ``hot`` or ``fully_drawn``
            * ``time_ms``
            * ``timestamp``
        """
        rows = [
            dict(
                package=event.package,
                component=event.component,
                type=event.startup_type.value,
                time_ms=event.windows_drawn_delay_ms,
                timestamp=event.timestamp,
            )
            for event in self._startups
        ] + [
            dict(
                package=event.package,
                component=event.component,
                type=FULLY_DRAWN_KEYWORD,
                time_ms=event.time_ms,
                timestamp=event.timestamp,
            )
            for event in self._fully_drawn
        ]
        columns = ['package', 'component', 'type', 'time_ms', 'timestamp']
        df = pd.DataFrame.from_records(rows, columns=columns)
        return df.sort_values('timestamp', kind='stable', ignore_index=True)

    def __len__(self):
        return len(self._startups) + len(self._fully_drawn)

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
