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
Connection to Android targets.
"""

import argparse
import contextlib
import os
import sys
import textwrap
import typing

import devlib

from appstartup.utils import Loggable, setup_logging
from appstartup.conf import SimpleConf, KeyDesc, LevelKeyDesc, TopLevelKeyDesc, TopLevelKeyError


class TargetConf(SimpleConf):
    """
    Target connection settings.

    Only keys defined below are allowed, with the given meaning and type:

    {generated_help}

    An instance can be created by calling :class:`~TargetConf` with a
    dictionary. The top-level `target-conf` key is not needed here:

    .. code-block:: python

        TargetConf({{
            'name': 'myboard',
            'kind': 'android',
            'device': 'emulator-5554',
        }})

    Or alternatively, from a YAML configuration file::

        TargetConf.from_yaml_map('target_conf.yml')

    The following special YAML tags can be used in the configuration file:

    .. code-block:: YAML

        target-conf:
            # "!env:<type> ENV_VAR_NAME" can be used to reference an
            # environment variable.
            device: !env:str ANDROID_SERIAL
            port: !env:int PORT

    .. note:: Only load trusted YAML files.
    """

    STRUCTURE = TopLevelKeyDesc('target-conf', 'target connection settings', (
        KeyDesc('name', 'Board name, free-form value only used to embelish logs', [str]),
        KeyDesc('kind', 'Target kind. Only "android" (adb) is supported', [str]),

        KeyDesc('device', 'ADB device. Takes precedence over "host"', [str, None]),
        KeyDesc('host', 'Hostname or IP address of the target when using ADB over TCP', [str, None]),
        KeyDesc('port', 'ADB over TCP port', [int, None]),
        KeyDesc('adb-server', 'Host running the ADB server to use', [str, None]),
        KeyDesc('username', '"root" username will root adb upon target connection', [str, None]),
        KeyDesc('workdir', 'Remote target workdir', [str]),
        LevelKeyDesc('wait-boot', 'Wait for the target to finish booting', (
            KeyDesc('enable', 'Enable the boot check', [bool]),
            KeyDesc('timeout', 'Timeout of the boot check', [int]),
        )),
    ))

    DEFAULT_SRC = {
        'kind': 'android',
        'workdir': '/data/local/tmp/devlib-target',
        'wait-boot': {
            'enable': True,
            'timeout': 60,
        },
    }


class CollectorConf(SimpleConf):
    """
    Application startup collection settings.

    {generated_help}
    """

    STRUCTURE = TopLevelKeyDesc('startup-conf', 'application startup collection settings', (
        KeyDesc('action-delay', 'Seconds to wait after each device action', [float, int]),
        LevelKeyDesc('logcat', 'logcat monitoring', (
            KeyDesc('buffers', 'Logcat buffers to read', [typing.List[str]]),
            KeyDesc('format', 'Logcat output format, as understood by "logcat -v"', [str]),
        )),
        LevelKeyDesc('poll', 'Waiting for the device to reach a state', (
            KeyDesc('timeout', 'Maximum amount of seconds to wait for', [float, int]),
            KeyDesc('period', 'Polling period in seconds', [float, int]),
        )),
    ))

    DEFAULT_SRC = {
        'action-delay': 2,
        'logcat': {
            'buffers': ['events', 'system'],
            'format': 'threadtime',
        },
        'poll': {
            'timeout': 10,
            'period': 0.5,
        },
    }


class Target(Loggable):
    """
    Wrap :class:`devlib.target.AndroidTarget` to provide additional features
    on top of it.

    The connection parameters are the ones of :class:`TargetConf`, see
    :attr:`INIT_KWARGS_KEY_MAP`.

    :param devlib_target: Already connected devlib target to wrap. When
        provided, no new connection is made.
    :type devlib_target: devlib.target.AndroidTarget

    All the attributes and methods not defined here are forwarded to the
    underlying devlib target.
    """

    ADB_PORT_DEFAULT = 5555

    INIT_KWARGS_KEY_MAP = {
        'name': ['name'],
        'kind': ['kind'],
        'device': ['device'],
        'host': ['host'],
        'port': ['port'],
        'adb_server': ['adb-server'],
        'username': ['username'],
        'workdir': ['workdir'],
        'wait_boot': ['wait-boot', 'enable'],
        'wait_boot_timeout': ['wait-boot', 'timeout'],
    }
    """
    Mapping of :meth:`__init__` parameters to their path in
    :class:`TargetConf`.
    """

    def __init__(self, kind='android', name='<noname>', device=None, host=None,
            port=None, adb_server=None, username=None, workdir=None,
            wait_boot=True, wait_boot_timeout=60, devlib_target=None,
    ):
        self.name = name
        self.kind = kind

        if devlib_target is None:
            devlib_target = self._init_target(
                kind=kind,
                name=name,
                device=device,
                host=host,
                port=port,
                adb_server=adb_server,
                username=username,
                workdir=workdir,
                wait_boot=wait_boot,
                wait_boot_timeout=wait_boot_timeout,
            )

        self.target = devlib_target

    def __getattr__(self, attr):
        """
        Forward all non-overriden attributes/method accesses to the underlying
        :class:`devlib.target.AndroidTarget`.

        .. note:: That will not forward special methods like __str__, since the
            interpreter bypasses __getattr__ when looking them up.
        """
        if (
            attr == 'target' or
            (attr.startswith('__') and attr.endswith('__'))
        ):
            raise AttributeError(attr)

        return getattr(self.target, attr)

    def __dir__(self):
        """
        List our attributes plus the ones from the underlying target.
        """
        attrs = set(super().__dir__()) | set(dir(self.target))
        return sorted(attrs)

    @classmethod
    def conf_to_init_kwargs(cls, conf):
        """
        Turn a :class:`TargetConf` into keyword arguments for :meth:`__init__`.
        """
        kwargs = {}
        for param, path in cls.INIT_KWARGS_KEY_MAP.items():
            sentinel = object()
            val = conf.get_nested_key(path, default=sentinel)
            if val is not sentinel:
                kwargs[param] = val
        return kwargs

    @classmethod
    def from_conf(cls, conf: TargetConf) -> 'Target':
        cls.get_logger().info(f'Target configuration:\n{conf}')
        kwargs = cls.conf_to_init_kwargs(conf)
        return cls(**kwargs)

    @classmethod
    def from_default_conf(cls):
        """
        Create a :class:`Target` from the YAML configuration file pointed by
        ``APPSTARTUP_CONF`` environment variable.

        .. note:: Only load trusted YAML files.
        """
        path = os.environ['APPSTARTUP_CONF']
        return cls.from_one_conf(path)

    @classmethod
    def from_one_conf(cls, path):
        """
        Create a :class:`Target` from a single YAML configuration file.

        .. note:: Only load trusted YAML files.
        """
        conf = TargetConf.from_yaml_map(path)
        return cls.from_conf(conf=conf)

    @classmethod
    def get_cli_parser(cls, params=None, description=None):
        """
        Build the :class:`argparse.ArgumentParser` used by
        :meth:`from_custom_cli`.

        :param params: See :meth:`from_custom_cli`.
        :type params: dict(str, dict)

        :param description: Description of the command, displayed before the
            target connection help.
        :type description: str
        """
        epilog = textwrap.dedent(
            """
            EXAMPLES

            --conf can point to a YAML target configuration file
            with all the necessary connection information:
            $ {script} --conf my_target.yml

            Alternatively, --device or --host can be used:
            $ {script} --device emulator-5554

            Note: only load trusted YAML files.
            """.format(
                script=os.path.basename(sys.argv[0])
            ))

        parser = argparse.ArgumentParser(
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=textwrap.dedent(description or
                """
                Connect to a target using the provided configuration.
                """
            ),
            epilog=epilog,
        )

        parser.add_argument("--conf", '-c',
            help="Path to a TargetConf yaml file. Other options will override what is specified in the file."
        )

        parser.add_argument("--kind", "-k",
            choices=["android"],
            help="The kind of target to connect to.")

        device_group = parser.add_mutually_exclusive_group()
        device_group.add_argument("--device", "-d",
                            help="The ADB ID of the target. Superseeds --host.")
        device_group.add_argument("--host", "-n",
                            help="The hostname/IP of the target.")

        parser.add_argument("--port",
                            type=int,
                            help="ADB over TCP port of the target.")

        parser.add_argument("--username", "-u",
                            help='"root" will root adb upon connection.')

        parser.add_argument("--log-level",
                            default='info',
                            choices=('warning', 'info', 'debug'),
                            help="Verbosity level of the logs.")

        params = params or {}
        for param, settings in params.items():
            parser.add_argument(f'--{param}', **settings)

        return parser

    @classmethod
    def from_custom_cli(cls, argv=None, params=None, description=None):
        """
        Create a Target from command line arguments.

        :param argv: The list of arguments. ``sys.argv[1:]`` will be used if
          this is ``None``.
        :type argv: list(str)

        :param params: Dictionary of custom parameters to add to the parser. It
            is in the form of
            ``{param_name: {dict of ArgumentParser.add_argument() options}}``.
        :type params: dict(str, dict)

        :param description: Description of the command.
        :type description: str

        :return: A tuple ``(args, target)``, ``args`` being an
            :class:`argparse.Namespace` with the custom parameters and
            ``conf``.
        """
        parser = cls.get_cli_parser(params=params, description=description)
        params = params or {}
        custom_params = {k.replace('-', '_') for k in params.keys()}

        # Options that are not a key in TargetConf must be listed here
        not_target_conf_opt = {
            'log_level', 'conf',
        }
        not_target_conf_opt.update(custom_params)

        args = parser.parse_args(argv)
        setup_logging(level=args.log_level.upper())

        target_conf = cls._conf_from_args(args, not_target_conf_opt)

        # Some sanity check to get better error messages
        if 'host' not in target_conf and 'device' not in target_conf:
            cls.get_logger().info('No --host or --device specified, using the default ADB device')

        custom_args = {
            param: value
            for param, value in vars(args).items()
            if param in custom_params
        }
        custom_args['conf'] = args.conf
        custom_args = argparse.Namespace(**custom_args)

        return custom_args, cls.from_conf(conf=target_conf)

    @staticmethod
    def _conf_from_args(args, not_target_conf_opt):
        target_conf = TargetConf()

        if args.conf:
            # Load the TargetConf from the file, and update it with command
            # line arguments
            with contextlib.suppress(TopLevelKeyError):
                conf = TargetConf.from_yaml_map(args.conf, add_default_src=False)
                target_conf.add_src(args.conf, conf)

        target_conf.add_src('command-line', {
            k: v for k, v in vars(args).items()
            if v is not None and k not in not_target_conf_opt
        })
        return target_conf

    def _init_target(self, kind, name, device, host, port, adb_server,
            username, workdir, wait_boot, wait_boot_timeout,
    ):
        """
        Initialize the Target
        """
        logger = self.logger
        conn_settings = {}

        logger.debug(f'Setting up {kind} target...')

        if kind != 'android':
            raise ValueError(f'Unsupported platform type {kind}')

        if device:
            pass
        elif host:
            port = port or self.ADB_PORT_DEFAULT
            device = f'{host}:{port}'
        # Let adb pick the only connected device
        else:
            device = None

        conn_settings['device'] = device
        conn_settings['adb_server'] = adb_server
        # If the username was explicitly set to "root", root the target as
        # early as possible
        conn_settings['adb_as_root'] = (username == 'root')

        settings = '\n    '.join(
            f'    {key}: {val}'
            for key, val in conn_settings.items()
        )
        logger.debug(f'{kind} {name} target connection settings:\n    {settings}')

        target = devlib.AndroidTarget(
            load_default_modules=False,
            connection_settings=conn_settings,
            working_directory=workdir,
            connect=False,
        )

        target.connect(check_boot_completed=wait_boot, timeout=wait_boot_timeout)
        logger.debug(f'Target info: {dict(abi=target.abi, workdir=target.working_directory)}')
        target.setup()
        logger.info(f"Connected to target {(name or '')}")
        return target

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
