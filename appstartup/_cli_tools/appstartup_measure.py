#! /usr/bin/env python3

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

import contextlib
import json
import logging
import os
import sys
import textwrap

from ruamel.yaml import YAML

from appstartup.target import Target, CollectorConf
from appstartup.collector import AppStartupHelper
from appstartup.conf import TopLevelKeyError
from appstartup.device import System, Screen


MODES = ('cold', 'warm', 'hot')


def prepare(logger, target, package, mode, clear_cache, delay):
    """
    Put the device in a state where launching ``package`` results in a startup
    of the given ``mode``.
    """
    logger.debug(f'Preparing {mode} launch of {package}')
    System.home(target)
    System.action_delay(delay)
    if mode == 'cold':
        System.clear_app(target, package)
        if clear_cache:
            System.clear_cache(target)
    # Warm and hot startups require the application to be resident. Dropping
    # the caches pushes the system to recreate the activity on next launch.
    elif mode == 'warm':
        System.clear_cache(target)
    elif mode == 'hot':
        pass
    else:
        raise ValueError(f'Unknown startup mode: {mode}')
    System.action_delay(delay)


def measure(logger, target, helper, package, mode, iterations, clear_cache, delay, wait_timeout=None, wait_period=0.5):
    """
    Launch ``package`` ``iterations`` times and collect the startup metrics.

    :param wait_timeout: If not ``None``, wait up to that amount of seconds
        for the application to reach the foreground after each launch.
    :type wait_timeout: float or None

    :returns: A tuple ``(metrics, df)`` with the metrics mapping and the
        :class:`pandas.DataFrame` of startup events.
    """
    if mode != 'cold':
        logger.info(f'Launching {package} to make it resident')
        System.clear_app(target, package)
        System.launch_package(target, package)
        System.action_delay(delay)

    if not helper.start_collecting():
        raise RuntimeError('Could not start collecting app startup metrics')

    try:
        for i in range(iterations):
            prepare(logger, target, package, mode, clear_cache, delay)
            logger.info(f'Iteration {i + 1}/{iterations}: {mode} launch of {package}')
            System.launch_package(target, package)
            if wait_timeout is not None:
                System.wait_for_package(target, package, timeout=wait_timeout, period=wait_period)
            System.action_delay(delay)
        metrics = helper.get_metrics()
        df = helper.metrics.df
    finally:
        helper.stop_collecting()
        System.home(target)

    return metrics, df


def write_output(metrics, df, path):
    """
    Write the metrics to ``path``, with the format chosen from the extension.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == '.csv':
        df.to_csv(path, index=False)
    elif ext == '.json':
        with open(path, 'w') as f:
            json.dump(metrics, f, indent=4, sort_keys=True)
    elif ext in ('.yml', '.yaml'):
        with open(path, 'w') as f:
            YAML().dump(dict(sorted(metrics.items())), f)
    else:
        raise ValueError(f'Unsupported output format "{ext}", use .yml, .json or .csv')


def main():
    params = {
        'package': dict(
            required=True,
            help='Name of the Android package to launch'
        ),
        'mode': dict(
            choices=MODES,
            default='cold',
            help='Kind of startup to measure'
        ),
        'iterations': dict(
            type=int,
            default=1,
            help='Number of launches'
        ),
        'clear-cache': dict(
            action='store_true',
            help='Drop the page cache before each cold launch. Requires root'
        ),
        'action-delay': dict(
            type=float,
            help='Seconds to wait after each device action'
        ),
        'output': dict(
            help='Write the metrics to that file instead of printing them. The format depends on the extension: .yml, .json or .csv (one line per startup)'
        ),
    }

    args, target = Target.from_custom_cli(
        description=textwrap.dedent('''
        Launch an Android application and collect its startup metrics.

        EXAMPLES

        $ appstartup-measure --conf target_conf.yml --package com.android.settings --mode cold --iterations 5

        '''),
        params=params,
    )
    return _main(args, target)


def _main(args, target):
    logger = logging.getLogger('appstartup-measure')

    conf = CollectorConf()
    if args.conf:
        with contextlib.suppress(TopLevelKeyError):
            conf.add_src(args.conf, CollectorConf.from_yaml_map(args.conf, add_default_src=False))
    if args.action_delay is not None:
        conf.add_src('command-line', {'action-delay': args.action_delay})

    if args.iterations < 1:
        logger.error('--iterations must be a positive integer')
        return 1

    helper = AppStartupHelper.from_conf(target, conf)
    Screen.wake_up_and_unlock(target)

    metrics, df = measure(
        logger=logger,
        target=target,
        helper=helper,
        package=args.package,
        mode=args.mode,
        iterations=args.iterations,
        clear_cache=args.clear_cache,
        delay=conf['action-delay'],
        wait_timeout=conf['poll']['timeout'],
        wait_period=conf['poll']['period'],
    )

    if not metrics:
        logger.warning(f'No startup of {args.package} was recorded')

    if args.output:
        write_output(metrics, df, args.output)
        logger.info(f'Metrics written to {args.output}')
    else:
        YAML().dump(dict(sorted(metrics.items())), sys.stdout)

    return 0


if __name__ == '__main__':
    sys.exit(main())

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
