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

import os
import itertools

from setuptools import setup, find_packages, find_namespace_packages


with open('README.rst', 'r') as f:
    long_description = f.read()

with open("appstartup/version.py") as f:
    version_globals = dict()
    exec(f.read(), version_globals)
    appstartup_version = version_globals['__version__']

def make_console_script(name):
    mod_name = name.replace('.py', '')
    cli_name = mod_name.replace('_', '-')
    return f'{cli_name}=appstartup._cli_tools.{mod_name}:main'

with os.scandir('appstartup/_cli_tools/') as scanner:
    console_scripts = [
        make_console_script(entry.name)
        for entry in scanner
        if entry.name.endswith('.py') and entry.is_file() and not entry.name.startswith('_')
    ]


def _find_packages(toplevel):
    return [toplevel] + [
        f'{toplevel}.{pkg}'
        for pkg in sorted(set(itertools.chain(
            find_namespace_packages(where=toplevel),
            find_packages(where=toplevel),
        )))
    ]

packages = _find_packages('appstartup')

package_data = {
    package: ['*']
    for package in packages
    if package.startswith('appstartup._assets.')
}
package_data['appstartup._assets'] = ['*']

extras_require={
    "dev": [
        "pytest",
    ],
}

# "all" extra requires all to install all the optional dependencies
extras_require['all'] = sorted(set(
    itertools.chain.from_iterable(extras_require.values())
))

python_requires = '>= 3.8'

if __name__ == "__main__":

    setup(
        name='appstartup',
        license='Apache License 2.0',
        version=appstartup_version,
        maintainer='Arm Ltd.',
        packages=packages,
        description='Android application startup metrics collection',
        long_description=long_description,
        python_requires=python_requires,
        install_requires=[
            # Pandas >= 1.0.0 has support for new nullable dtypes
            "pandas >=1.0.0, <3.0",
            # Earlier versions have broken __slots__ deserialization
            "ruamel.yaml >= 0.16.6",
            "devlib >= 1.3.4",
            # Used by devlib for adb, and to monitor logcat
            "pexpect",
            # check_type() with collection_check_strategy
            "typeguard >= 4",
        ],

        extras_require=extras_require,
        package_data=package_data,
        classifiers=[
            "Programming Language :: Python :: 3 :: Only",
            # It has not been tested under any other OS
            "Operating System :: POSIX :: Linux",

            "Topic :: Software Development :: Testing",
            "Intended Audience :: Developers",
        ],
        entry_points={
            'console_scripts': console_scripts,
        },
    )

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
