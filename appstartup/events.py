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
Parsing of Android event log lines related to application startup.

The lines are produced by ``logcat -b events`` in either ``threadtime`` or
``brief`` format::

    10-18 04:50:12.345  1234  1250 I wm_activity_launch_time: [0,75416810,com.android.settings/.Settings,512]
    I/wm_activity_launch_time( 1234): [0,75416810,com.android.settings/.Settings,512]
"""

import re
from collections import namedtuple
from collections.abc import Mapping


class LogParseError(ValueError):
    """
    Raised when a line with a recognized event tag has unexpected content.

    :param line: The offending line.
    :type line: str
    """
    def __init__(self, msg, line=None):
        super().__init__(msg)
        self.msg = msg
        self.line = line

    def __str__(self):
        if self.line is None:
            return self.msg
        return f'{self.msg}: {self.line!r}'


PROCESS_START = 'process-start'
ACTIVITY_CREATE = 'activity-create'
ACTIVITY_RESTART = 'activity-restart'
LAUNCH_TIME = 'launch-time'
FULLY_DRAWN = 'fully-drawn'

EVENT_TAGS = {
    'am_proc_start': PROCESS_START,
    # Android <= 9 uses "am_" prefixes, the activity events moved to "wm_" in
    # Android 10
    'am_on_create_called': ACTIVITY_CREATE,
    'wm_on_create_called': ACTIVITY_CREATE,
    'am_on_restart_called': ACTIVITY_RESTART,
    'wm_on_restart_called': ACTIVITY_RESTART,
    'am_activity_launch_time': LAUNCH_TIME,
    'wm_activity_launch_time': LAUNCH_TIME,
    'am_activity_fully_drawn_time': FULLY_DRAWN,
    'wm_activity_fully_drawn_time': FULLY_DRAWN,
}
"""
Mapping of event log tags to the kind of event they carry.
"""

# Minimum number of fields expected for each kind of event
_MIN_FIELDS = {
    PROCESS_START: 5,
    ACTIVITY_CREATE: 2,
    ACTIVITY_RESTART: 2,
    LAUNCH_TIME: 4,
    FULLY_DRAWN: 4,
}

_THREADTIME_REGEX = re.compile(
    r'^(?P<date>\d+-\d+)\s+'
    r'(?P<time>\d+:\d+:\d+(?:\.\d+)?)\s+'
    r'(?P<pid>\d+)\s+(?P<tid>\d+)\s+'
    r'(?P<priority>[VDIWEFS])\s+'
    r'(?P<tag>[^\s:]+)\s*:\s*'
    r'(?P<message>.*)$'
)

_BRIEF_REGEX = re.compile(
    r'^(?P<priority>[VDIWEFS])/'
    r'(?P<tag>[^(\s]+)\s*'
    r'\(\s*(?P<pid>\d+)\):\s*'
    r'(?P<message>.*)$'
)


LOG_PRIORITIES = 'VDIWEFS'
"""
Logcat priority letters, from the lowest to the highest.
"""


def logcat_filterspecs(tags=None):
    """
    Logcat filter specifications only letting through the given tags.

    :param tags: Tags to let through. Either a mapping of tags to the
        minimum priority letter, or an iterable of tags, which are then let
        through at any priority. Defaults to :data:`EVENT_TAGS`.
    :type tags: dict(str, str) or list(str)

    :returns: A list of ``<tag>:<priority>`` arguments for ``logcat``, ending
        with ``*:S`` to silence all the other tags.

    >>> logcat_filterspecs(['am_proc_start'])
    ['am_proc_start:V', '*:S']
    """
    if tags is None:
        tags = EVENT_TAGS
    if not isinstance(tags, Mapping):
        tags = dict.fromkeys(tags, 'V')

    for tag, priority in tags.items():
        if priority not in LOG_PRIORITIES:
            raise ValueError(f'Invalid logcat priority "{priority}" for tag {tag}')

    return [
        f'{tag}:{priority}'
        for tag, priority in sorted(tags.items())
    ] + ['*:S']


def split_fields(payload):
    """
    Split the payload of an event log line into fields.

    The payload is a bracketed comma-separated list. Nested ``{...}`` and
    ``[...]`` groups are kept as single fields:

    >>> split_fields('[0,1234,10100,com.foo,activity,{com.foo/com.foo.Main}]')
    ['0', '1234', '10100', 'com.foo', 'activity', '{com.foo/com.foo.Main}']
    """
    payload = payload.strip()
    if payload.startswith('[') and payload.endswith(']'):
        payload = payload[1:-1]
    # Single-field events are not bracketed
    else:
        return [payload]

    fields = []
    depth = 0
    curr = []
    for char in payload:
        if char in '{[':
            depth += 1
        elif char in '}]':
            depth = max(0, depth - 1)

        if char == ',' and not depth:
            fields.append(''.join(curr).strip())
            curr = []
        else:
            curr.append(char)

    fields.append(''.join(curr).strip())
    return fields


def expand_component(component):
    """
    Expand the short form of a component name.

    >>> expand_component('com.android.settings/.Settings')
    'com.android.settings/com.android.settings.Settings'
    """
    component = component.strip().strip('{}')
    pkg, sep, activity = component.partition('/')
    if sep and activity.startswith('.'):
        activity = pkg + activity
    return f'{pkg}{sep}{activity}'


def package_of(component):
    """
    Package name of a component, i.e. the part before the ``/``.
    """
    return component.strip().strip('{}').partition('/')[0]


def class_of(component):
    """
    Fully qualified class name of the activity of a component.
    """
    return expand_component(component).partition('/')[2]


def _parse_time_of_day(time_str):
    hours, minutes, seconds = time_str.split(':')
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class LogEvent(namedtuple('LogEvent', 'timestamp pid tid priority tag fields')):
    """
    Event log entry.

    :param timestamp: Seconds since the start of the day, or ``None`` if the
        log format does not carry it. Only meaningful to order events.
    :type timestamp: float or None

    :param pid: PID of the process that logged the event.
    :type pid: int

    :param tid: TID of the thread that logged the event, or ``None``.
    :type tid: int or None

    :param priority: Log priority letter.
    :type priority: str

    :param tag: Event log tag, e.g. ``wm_activity_launch_time``.
    :type tag: str

    :param fields: Fields of the event payload.
    :type fields: list(str)
    """
    __slots__ = ()

    @property
    def kind(self):
        """
        Kind of event, one of the values of :data:`EVENT_TAGS`.
        """
        return EVENT_TAGS[self.tag]

    @property
    def component(self):
        """
        Expanded component name for launch and fully drawn events, or
        ``None``.
        """
        if self.kind in (LAUNCH_TIME, FULLY_DRAWN):
            return expand_component(self.fields[2])
        elif self.kind == PROCESS_START and len(self.fields) > 5:
            return expand_component(self.fields[5])
        else:
            return None

    @property
    def class_name(self):
        """
        Class name of the activity the event is about.
        """
        if self.kind in (ACTIVITY_CREATE, ACTIVITY_RESTART):
            return self.fields[1]
        component = self.component
        return class_of(component) if component else None

    @property
    def package(self):
        """
        Package the event is about, or ``None`` if it cannot be told from the
        event alone.
        """
        if self.kind == PROCESS_START:
            # Secondary processes are named "<package>:<name>"
            return self.fields[3].partition(':')[0]
        component = self.component
        return package_of(component) if component else None

    @property
    def hosting_type(self):
        """
        Reason why a process was started, e.g. ``activity`` or ``service``.
        """
        if self.kind == PROCESS_START:
            return self.fields[4]
        return None

    @property
    def time_ms(self):
        """
        Delay in milliseconds carried by launch and fully drawn events.
        """
        if self.kind in (LAUNCH_TIME, FULLY_DRAWN):
            return int(self.fields[3])
        return None


def split_log_line(line):
    """
    Split a logcat line into its header fields and message.

    :returns: A ``dict`` with at least the ``priority``, ``tag``, ``pid`` and
        ``message`` keys, as strings. ``threadtime`` lines also carry
        ``date``, ``time`` and ``tid``. ``None`` is returned for lines in
        another format, such as ``--------- beginning of events``.
    """
    line = line.strip()
    for regex in (_THREADTIME_REGEX, _BRIEF_REGEX):
        match = regex.match(line)
        if match:
            return match.groupdict()
    return None


def parse_log_line(line):
    """
    Parse a logcat line.

    :param line: Line in ``threadtime`` or ``brief`` format.
    :type line: str

    :returns: A :class:`LogEvent`, or ``None`` if the line is not one of the
        events listed in :data:`EVENT_TAGS`.

    :raises LogParseError: If the line has a recognized tag but its payload
        does not have the expected shape.
    """
    line = line.strip()
    entry = split_log_line(line)
    if entry is None:
        return None

    tag = entry['tag']
    try:
        kind = EVENT_TAGS[tag]
    except KeyError:
        return None

    fields = split_fields(entry['message'])
    if len(fields) < _MIN_FIELDS[kind]:
        raise LogParseError(f'Expected at least {_MIN_FIELDS[kind]} fields for {tag}, got {len(fields)}', line)

    time = entry.get('time')
    tid = entry.get('tid')
    event = LogEvent(
        timestamp=None if time is None else _parse_time_of_day(time),
        pid=int(entry['pid']),
        tid=None if tid is None else int(tid),
        priority=entry['priority'],
        tag=tag,
        fields=fields,
    )

    if kind in (LAUNCH_TIME, FULLY_DRAWN):
        if '/' not in fields[2]:
            raise LogParseError(f'Invalid component name "{fields[2]}" for {tag}', line)
        try:
            event.time_ms
        except ValueError:
            raise LogParseError(f'Invalid time "{fields[3]}" for {tag}', line)

    return event


def parse_log(lines):
    """
    Parse an iterable of lines, ignoring lines that are not startup events.

    :raises LogParseError: see :func:`parse_log_line`.
    """
    for line in lines:
        event = parse_log_line(line)
        if event is not None:
            yield event

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
