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
Miscellaneous utilities shared by all :mod:`appstartup` modules.
"""

import os
import inspect
import logging
import logging.config
import operator
import time

from appstartup._assets import LOGGING_CONF_PATH


class _DummyLogger:
    def __getattr__(self, attr):
        x = getattr(logging, attr)
        if callable(x):
            return lambda *args, **kwargs: None
        else:
            return None


class Loggable:
    """
    A simple class for uniformly named loggers
    """

    # This cannot be memoized, as we behave differently based on the call stack
    @property
    def logger(self):
        """
        Convenience short-hand for ``self.get_logger()``.
        """
        return self.get_logger()

    @classmethod
    def get_logger(cls, suffix=None):
        if any (
            frame.function == '__del__'
            for frame in inspect.stack(context=0)
        ):
            return _DummyLogger()
        else:
            cls_name = cls.__name__
            module = inspect.getmodule(cls)
            if module:
                name = module.__name__ + '.' + cls_name
            else:
                name = cls_name
            if suffix:
                name += '.' + suffix
            return logging.getLogger(name)


def setup_logging(filepath=None, level=None):
    """
    Initialize logging used for all the appstartup modules.

    :param filepath: the relative or absolute path of the logging
        configuration to use. Defaults to the configuration shipped with the
        package.
    :type filepath: str or None

    :param level: Override the conf file and force logging level. Defaults to
        ``logging.INFO``.
    :type level: int or str
    """
    resolved_level = logging.INFO if level is None else level

    # Ensure basicConfig will have effects again by getting rid of the existing
    # handlers
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Capture the warnings as log entries
    logging.captureWarnings(True)

    if level is not None:
        log_format = '[%(asctime)s][%(name)s] %(levelname)s  %(message)s'
        logging.basicConfig(level=resolved_level, format=log_format)
    else:
        filepath = filepath or LOGGING_CONF_PATH
        filepath = os.path.abspath(filepath)

        # Set the level first, so the config file can override with more details
        logging.getLogger().setLevel(resolved_level)

        if os.path.exists(filepath):
            logging.config.fileConfig(filepath, disable_existing_loggers=False)
            logging.info(f'Using appstartup logging configuration: {filepath}')
        else:
            raise FileNotFoundError(f'Logging configuration file not found: {filepath}')


def get_subclasses(cls, only_leaves=False, cls_set=None):
    """Get all indirect subclasses of the class."""
    if cls_set is None:
        cls_set = set()

    for subcls in cls.__subclasses__():
        if subcls not in cls_set:
            to_be_added = set(get_subclasses(subcls, only_leaves, cls_set))
            to_be_added.add(subcls)
            if only_leaves:
                to_be_added = {
                    cls for cls in to_be_added
                    if not cls.__subclasses__()
                }
            cls_set.update(to_be_added)

    return cls_set


def get_nested_key(mapping, key_path, getitem=operator.getitem):
    """
    Get a key in a nested mapping

    :param mapping: The mapping to lookup in
    :type mapping: collections.abc.Mapping

    :param key_path: Path to the key in the mapping, in the form of a list of
        keys.
    :type key_path: list

    :param getitem: Function used to get items on the mapping. Defaults to
        :func:`operator.getitem`.
    :type getitem: collections.abc.Callable
    """
    for key in key_path:
        mapping = getitem(mapping, key)

    return mapping


def boolean(value):
    """
    Convert a string coming from a device or an environment variable into a
    :class:`bool`.

    ``"0"``, ``"false"``, ``"no"``, ``"off"``, ``"n"`` and the empty string are
    considered false (case insensitive), anything else is true.
    """
    if isinstance(value, str):
        return value.strip().lower() not in ('', '0', 'false', 'no', 'off', 'n')
    return bool(value)


def poll(predicate, timeout, period=0.5, sleep=time.sleep, clock=time.monotonic):
    """
    Call ``predicate`` every ``period`` seconds until it returns a true value.

    :param predicate: Callable with no parameter.
    :type predicate: collections.abc.Callable

    :param timeout: Maximum amount of seconds to wait for.
    :type timeout: float

    :param period: Amount of seconds to sleep between two calls.
    :type period: float

    :returns: The true value returned by ``predicate``.
    :raises TimeoutError: If the predicate did not return a true value before
        the timeout expired.
    """
    deadline = clock() + timeout
    while True:
        res = predicate()
        if res:
            return res
        if clock() >= deadline:
            raise TimeoutError(f'Condition not met after {timeout}s')
        sleep(period)

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
