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

ASSETS_PATH = os.path.dirname(__file__)
"""
Path in which all assets the ``appstartup`` package relies on are located in.
"""

LOGGING_CONF_PATH = os.path.join(ASSETS_PATH, 'logging.conf')
"""
Default logging configuration used by :func:`appstartup.utils.setup_logging`.
"""
