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
Helpers to drive specific applications.
"""

from appstartup.utils import Loggable, get_subclasses
from appstartup.device import System


class AppHelper(Loggable):
    """
    Base class for application helpers.

    :param target: Target the application runs on.
    :type target: appstartup.target.Target

    :param timeout: Maximum amount of seconds to wait for the application to
        reach the foreground or leave it.
    :type timeout: float

    Subclasses set :attr:`package`.
    """

    package = None
    """
    Name of the Android package of the application.
    """

    activity = None
    """
    Activity started by :meth:`open`. The launcher activity is used when
    ``None``.
    """

    def __init__(self, target, timeout=10):
        self.target = target
        self.timeout = timeout

    @classmethod
    def get_helper(cls, name):
        """
        Get the helper class for the given name.

        :param name: Name of the class in lowercase, without the ``Helper``
            suffix, e.g. ``calendar`` for :class:`CalendarHelper`.
        :type name: str
        """
        helpers = {
            subcls.__name__.lower()[:-len('helper')]: subcls
            for subcls in get_subclasses(cls)
            if subcls.package is not None
        }
        try:
            return helpers[name.lower()]
        except KeyError:
            raise ValueError(f'Unknown application helper "{name}", available helpers are: {", ".join(sorted(helpers))}')

    def is_open(self):
        """
        ``True`` if the application owns the focused window.
        """
        return System.foreground_package(self.target) == self.package

    def open(self):
        """
        Launch the application and wait for it to reach the foreground.

        :raises TimeoutError: if the application did not show up in time.
        """
        self.logger.info(f'Opening {self.package}')
        System.launch_package(self.target, self.package, activity=self.activity)
        System.wait_for_package(self.target, self.package, timeout=self.timeout)

    def exit(self):
        """
        Go back to the home screen and wait for the application to leave the
        foreground.

        :raises TimeoutError: if the application is still focused.
        """
        self.logger.info(f'Exiting {self.package}')
        System.home(self.target)
        System.wait_for_package(self.target, self.package, timeout=self.timeout, present=False)


class CalendarHelper(AppHelper):
    package = 'com.google.android.calendar'


class SettingsHelper(AppHelper):
    package = 'com.android.settings'


class HelperAccessor:
    """
    Lazily build an :class:`AppHelper`.

    :param helper_cls: Helper class to instantiate.
    :type helper_cls: type

    :param target: Target passed to the helper.
    :type target: appstartup.target.Target

    Other keyword arguments are forwarded to ``helper_cls``.
    """

    def __init__(self, helper_cls, target, **kwargs):
        self.helper_cls = helper_cls
        self.target = target
        self._kwargs = kwargs
        self._helper = None

    def get(self):
        """
        Get the helper, creating it on first call.
        """
        if self._helper is None:
            self._helper = self.helper_cls(self.target, **self._kwargs)
        return self._helper

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
