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
Device actions used to drive application startups.
"""

import re
import time
from shlex import quote

from appstartup.utils import Loggable, poll


# Matches e.g. "mCurrentFocus=Window{3c8f1b2 u0 com.android.settings/com.android.settings.Settings}"
_FOCUS_REGEX = re.compile(
    r'mCurrentFocus=Window\{\S+\s+(?:u\d+\s+)?(?P<window>[^\s/}]+)'
)

_KEYGUARD_REGEX = re.compile(
    r'\b(?:mShowingLockscreen|mDreamingLockscreen|isStatusBarKeyguard|showing)=true\b'
)


class System(Loggable):
    """
    Collection of Android related services

    All the methods take a :class:`devlib.target.AndroidTarget` (or
    :class:`appstartup.target.Target`) as first parameter.
    """

    ACTION_DELAY = 2
    """
    Seconds to wait after an action for the device to settle.
    """

    @classmethod
    def action_delay(cls, delay=None):
        """
        Sleep for :attr:`ACTION_DELAY` seconds.

        :param delay: Override the amount of seconds to sleep for.
        :type delay: float or None
        """
        delay = cls.ACTION_DELAY if delay is None else delay
        time.sleep(delay)

    @staticmethod
    def force_stop(target, package, clear=False):
        """
        Stop the application and clear its data if necessary.

        :param target: instance of devlib Android target
        :type target: devlib.target.AndroidTarget

        :param package: name of the package
        :type package: str

        :param clear: clear application data
        :type clear: bool
        """
        target.execute(f'am force-stop {quote(package)}')
        if clear:
            target.execute(f'pm clear {quote(package)}')

    @classmethod
    def clear_app(cls, target, package):
        """
        Stop the application so that its next launch starts a new process.
        """
        cls.get_logger().debug(f'Stopping {package}')
        cls.force_stop(target, package)

    @staticmethod
    def start_app(target, package):
        """
        Start the main activity of the specified application

        :param package: name of the package
        :type package: str
        """
        target.execute(f'monkey -p {quote(package)} -c android.intent.category.LAUNCHER 1')

    @staticmethod
    def start_activity(target, package, activity):
        """
        Start an application by specifying package and activity name.

        :param package: name of the package
        :type package: str

        :param activity: name of the activity, relative to ``package`` when it
            starts with a dot
        :type activity: str
        """
        target.execute(f'am start -n {quote(package)}/{quote(activity)}')

    @classmethod
    def launch_package(cls, target, package, activity=None):
        """
        Launch ``package`` the way the launcher does, or start ``activity``
        when one is given.
        """
        cls.get_logger().debug(f'Launching {package}')
        if activity is None:
            cls.start_app(target, package)
        else:
            cls.start_activity(target, package, activity)

    @staticmethod
    def send_key_code(target, keycode):
        """
        Inject a key event.

        :param keycode: Name of the key code, with or without the
            ``KEYCODE_`` prefix, or its integer value.
        :type keycode: str or int
        """
        if isinstance(keycode, str):
            keycode = keycode.upper()
            if not keycode.startswith('KEYCODE_'):
                keycode = f'KEYCODE_{keycode}'
        target.execute(f'input keyevent {keycode}')

    @classmethod
    def home(cls, target):
        """
        Press the home button
        """
        cls.send_key_code(target, 'KEYCODE_HOME')

    @classmethod
    def back(cls, target):
        """
        Press the back button
        """
        cls.send_key_code(target, 'KEYCODE_BACK')

    @classmethod
    def wakeup(cls, target):
        """
        Wake up the system if its sleeping
        """
        cls.send_key_code(target, 'KEYCODE_WAKEUP')

    @classmethod
    def clear_cache(cls, target):
        """
        Drop the page cache, dentries and inodes of the device.

        .. note:: Requires root.
        """
        cls.get_logger().debug('Dropping caches')
        target.execute('sync && echo 3 > /proc/sys/vm/drop_caches', as_root=True)

    @staticmethod
    def foreground_package(target):
        """
        Name of the package owning the focused window, or ``None`` if no
        window is focused.
        """
        output = target.execute('dumpsys window windows')
        match = _FOCUS_REGEX.search(output)
        if match:
            return match.group('window')
        return None

    @classmethod
    def wait_for_package(cls, target, package, timeout=10, period=0.5, present=True):
        """
        Poll until ``package`` owns the focused window.

        :param timeout: Maximum amount of seconds to wait for.
        :type timeout: float

        :param period: Polling period in seconds.
        :type period: float

        :param present: If ``False``, wait until ``package`` does not own the
            focused window anymore.
        :type present: bool

        :raises TimeoutError: if the condition is not met before ``timeout``.
        """
        def check():
            return (cls.foreground_package(target) == package) == present

        try:
            poll(check, timeout=timeout, period=period)
        except TimeoutError:
            state = 'foreground' if present else 'background'
            raise TimeoutError(f'{package} not in {state} after {timeout}s')

    @staticmethod
    def list_packages(target, apk_filter=''):
        """
        List the installed packages matching the specified filter

        :param apk_filter: a substring which must be part of the package name
        :type apk_filter: str
        """
        cmd = 'cmd package list packages'
        if apk_filter:
            cmd = f'{cmd} {quote(apk_filter.lower())}'
        output = target.execute(cmd)
        return sorted(
            line.strip().replace('package:', '', 1)
            for line in output.splitlines()
            if line.strip()
        )

    @classmethod
    def is_installed(cls, target, package):
        return package in cls.list_packages(target, package)


class Screen(Loggable):
    """
    Set of utility functions to control an Android Screen
    """

    @staticmethod
    def is_locked(target):
        """
        ``True`` if the keyguard is showing.
        """
        output = target.execute('dumpsys window policy')
        return bool(_KEYGUARD_REGEX.search(output))

    @classmethod
    def wake_up_and_unlock(cls, target):
        """
        Turn the screen on, dismiss the keyguard and keep the screen on while
        the device is plugged in.

        .. note:: Only a keyguard without credentials can be dismissed.
        """
        cls.get_logger().info('Waking up and unlocking the screen')
        System.wakeup(target)
        target.execute('wm dismiss-keyguard')
        target.execute('svc power stayon true')

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
