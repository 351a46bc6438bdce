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
Configuration files handling.

Configurations are layered: each value can be provided by several named
sources, the most recently added one being used unless it was added as a
fallback. The allowed keys and their types are declared in the ``STRUCTURE``
class attribute of :class:`SimpleConf` subclasses.
"""

import abc
import copy
import difflib
import functools
import io
import os
import re
import textwrap
import threading
import contextlib
import typing
from collections.abc import Mapping, Iterable

import typeguard
from ruamel.yaml import YAML

from appstartup.utils import Loggable, get_nested_key, boolean


class ConfigKeyError(KeyError):
    """
    Exception raised when a key is not allowed in a configuration.
    """
    def __init__(self, msg, key=None):
        super().__init__(msg)
        self.key = key
        self.msg = msg

    def __str__(self):
        return self.msg


class TopLevelKeyError(ValueError):
    """
    Exception raised when no top-level key matches the expected one in the
    given configuration file.
    """
    def __init__(self, key):
        self.key = key

    def __str__(self):
        return f'Key "{self.key}" needs to appear at the top level'


def check_type(x, classinfo):
    """
    Equivalent of ``isinstance()`` that will also work with typing hints.

    :raises TypeError: if ``x`` does not match any of the types.
    """
    if isinstance(classinfo, Iterable):
        typ = typing.Union[tuple(classinfo)]
    else:
        typ = classinfo

    try:
        typeguard.check_type(
            x,
            typ,
            forward_ref_policy=typeguard.ForwardRefPolicy.ERROR,
            collection_check_strategy=typeguard.CollectionCheckStrategy.ALL_ITEMS,
        )
    except typeguard.TypeCheckError as e:
        raise TypeError(str(e))


def _get_cls_name(cls):
    if cls is None:
        return 'None'
    return getattr(cls, '__qualname__', None) or str(cls).replace('typing.', '')


class KeyDescBase(abc.ABC):
    """
    Base class for configuration files key descriptor.

    This allows defining the structure of the configuration file, in order
    to sanitize user input and generate help snippets used in various places.
    """
    INDENTATION = 4 * ' '
    _VALID_NAME_PATTERN = r'^[a-zA-Z0-9-]+$'

    def __init__(self, name, help):
        # pylint: disable=redefined-builtin

        self._check_name(name)
        self.name = name
        self.help = help
        self.parent = None

    @classmethod
    def _check_name(cls, name):
        if not re.match(cls._VALID_NAME_PATTERN, name):
            raise ValueError(f'Invalid key name "{name}". Key names must match: {cls._VALID_NAME_PATTERN}')

    @property
    def qualname(self):
        """
        "Qualified" name of the key.

        This is a slash-separated path in the config file from the root to that
        key:
        <parent qualname>/<name>
        """
        return '/'.join(self.path)

    @property
    def path(self):
        """
        Path in the config file from the root to that key.
        """
        curr = [self.name]
        if self.parent is None:
            return curr
        return self.parent.path + curr

    @abc.abstractmethod
    def get_help(self):
        """
        Get a help message describing the key.
        """

    @abc.abstractmethod
    def validate_val(self, val):
        """
        Validate a value to be used for that key.

        :raises TypeError: When the value has the wrong type
        """


class KeyDesc(KeyDescBase):
    """
    Key descriptor describing a leaf key in the configuration.

    :param name: Name of the key

    :param help: Short help message describing the use of that key

    :param classinfo: sequence of allowed types for that key. As a special
        case, `None` is allowed in that sequence of types, even though it is
        not strictly speaking a type. Typing hints such as
        ``typing.List[str]`` are checked with :mod:`typeguard`.
    :type classinfo: collections.abc.Sequence
    """

    def __init__(self, name, help, classinfo):
        # pylint: disable=redefined-builtin
        super().__init__(name=name, help=help)
        self.classinfo = tuple(classinfo)

    def validate_val(self, val):
        """
        Check that the value is an instance of one of the type specified in the
        ``self.classinfo``.

        If the value is not an instance of any of these types, then a
        :exc:`TypeError` is raised.
        """
        classinfo = tuple(
            type(None) if cls is None else cls
            for cls in self.classinfo
        )
        try:
            check_type(val, classinfo)
        except TypeError as e:
            key = self.qualname
            expected = ' or '.join(map(_get_cls_name, self.classinfo))
            raise TypeError(f'Key "{key}" is an instance of {_get_cls_name(type(val))}, but should be instance of {expected}: {e}. Help: {self.help}')

    def get_help(self):
        classinfo = ' or '.join(map(_get_cls_name, self.classinfo))
        help_ = f': {self.help}' if self.help else ''
        return f'|- {self.name} ({classinfo}){help_}.'


class LevelKeyDesc(KeyDescBase, Mapping):
    """
    Key descriptor defining a hierarchical level in the configuration.

    :param name: name of the key in the configuration

    :param help: Short help describing the use of the keys inside that level

    :param children: collections.abc.Sequence of :class:`KeyDescBase` defining
        the allowed keys under that level
    :type children: collections.abc.Sequence

    Children keys will get this key assigned as a parent when passed to the
    constructor.
    """

    def __init__(self, name, help, children):
        # pylint: disable=redefined-builtin
        super().__init__(name=name, help=help)
        self.children = children

        # Fixup parent for easy nested declaration
        for key_desc in self.children:
            key_desc.parent = self

    @property
    def _key_map(self):
        return {
            key_desc.name: key_desc
            for key_desc in self.children
        }

    def __iter__(self):
        return iter(self._key_map)

    def __len__(self):
        return len(self._key_map)

    def __getitem__(self, key):
        self.check_allowed_key(key)
        return self._key_map[key]

    def check_allowed_key(self, key):
        """
        Checks that a given key is allowed under that levels
        """
        try:
            self._key_map[key]
        except KeyError:
            # pylint: disable=raise-missing-from
            try:
                closest_match = difflib.get_close_matches(
                    word=str(key),
                    possibilities=self._key_map.keys(),
                    n=1,
                )[0]
            except IndexError:
                closest_match = ''
            else:
                closest_match = f', maybe you meant "{closest_match}" ?'

            parent = self.qualname
            raise ConfigKeyError(
                f'Key "{key}" is not allowed in {parent}{closest_match}',
                key=key,
            )

    def validate_val(self, conf):
        """Validate a mapping to be used as a configuration source"""
        if not isinstance(conf, Mapping):
            key = self.qualname
            raise TypeError(f'Configuration of {key} must be a Mapping')
        for key, val in conf.items():
            self[key].validate_val(val)

    def get_help(self):
        idt = self.INDENTATION
        help_ = f'+- {self.name}:' + (f' {self.help}' if self.help else '')
        nl = '\n' + idt
        return help_ + nl + nl.join(
            key_desc.get_help().replace('\n', nl)
            for key_desc in self.children
        )


class TopLevelKeyDesc(LevelKeyDesc):
    """
    Top-level key descriptor, which defines the top-level key to use in the
    configuration files.

    This top-level key is omitted in all interfaces except for the
    configuration file, since it only reflects the configuration class
    """

    @property
    def path(self):
        return []

    @property
    def qualname(self):
        return self.name


class _YAMLLoader(Loggable):
    """
    ruamel.yaml setup shared by configuration classes.

    The following YAML tags are supported on top of what YAML provides out of
    the box:

        * ``!include``: include the content of another YAML file. Environment
          variables are expanded in the given path. Relative paths are treated
          as relative to the file in which the ``!include`` tag appears.

        * ``!env``: reference an environment variable, with the type given
          after the colon (``str``, ``int``, ``float``, ``bool`` or
          ``interpolate``):

            .. code-block:: yaml

                !env:int MY_ENV_VAR
    """

    YAML_ENCODING = 'utf-8'

    _ENV_TYPES = {
        'str': str,
        'int': int,
        'float': float,
        'bool': boolean,
    }

    # Allow !include to use relative paths from the current file. Since we
    # introduce a global state, we use thread-local storage.
    _included_path = threading.local()

    @classmethod
    def get_yaml(cls):
        yaml = YAML(typ='rt')
        yaml.allow_unicode = True
        yaml.default_flow_style = False
        yaml.indent = 4
        yaml.constructor.add_constructor('!include', cls._yaml_include_constructor)
        yaml.constructor.add_multi_constructor('!env:', cls._yaml_env_var_constructor)
        return yaml

    @staticmethod
    @contextlib.contextmanager
    def _set_relative_include_root(path):
        old = getattr(_YAMLLoader._included_path, 'val', None)
        _YAMLLoader._included_path.val = path
        try:
            yield
        finally:
            _YAMLLoader._included_path.val = old

    @classmethod
    def _yaml_include_constructor(cls, loader, node):
        path = loader.construct_scalar(node)
        path = os.path.expandvars(str(path))

        # Paths are relative to the file that is being included
        root = getattr(cls._included_path, 'val', None)
        if not os.path.isabs(path) and root:
            path = os.path.join(root, path)

        return cls.load(path)

    @classmethod
    def _yaml_env_var_constructor(cls, loader, suffix, node):
        string = str(loader.construct_scalar(node))

        if suffix == 'interpolate':
            return os.path.expandvars(string)

        try:
            type_ = cls._ENV_TYPES[suffix]
        except KeyError:
            raise ValueError(f'Unknown type "{suffix}" for !env tag, use one of: {", ".join(sorted(cls._ENV_TYPES))}')

        try:
            value = os.environ[string]
        except KeyError:
            cls._warn_missing_env(string)
            return None
        else:
            return type_(value)

    @classmethod
    @functools.lru_cache(maxsize=None)
    def _warn_missing_env(cls, varname):
        cls.get_logger().warning(f'Environment variable "{varname}" not defined, using None value')

    @classmethod
    def load(cls, path):
        # Since the parser is not re-entrant, create a fresh one
        yaml = cls.get_yaml()
        path = str(path)
        with cls._set_relative_include_root(os.path.dirname(os.path.abspath(path))):
            with open(path, encoding=cls.YAML_ENCODING) as f:
                return yaml.load(f)

    @classmethod
    def dump(cls, data, fh):
        cls.get_yaml().dump(data, fh)


def _to_plain(data):
    """
    Convert ruamel.yaml containers into plain Python containers.
    """
    if isinstance(data, Mapping):
        return {str(key): _to_plain(val) for key, val in data.items()}
    elif isinstance(data, (list, tuple)):
        return [_to_plain(x) for x in data]
    else:
        return data


def _merge(base, update):
    merged = dict(base)
    for key, val in update.items():
        if isinstance(val, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(merged[key], val)
        else:
            merged[key] = val
    return merged


def _filter_none(mapping):
    return {
        key: _filter_none(val) if isinstance(val, Mapping) else val
        for key, val in mapping.items()
        if val is not None
    }


class SimpleConf(Loggable, Mapping):
    """
    Base class providing layered configuration management.

    :param conf: Mapping to initialize the configuration with.
    :type conf: collections.abc.Mapping

    :param src: Name of the source added when passing ``conf``
    :type src: str

    :param add_default_src: Add the ``DEFAULT_SRC`` source as a fallback.
    :type add_default_src: bool

    The class inherits from :class:`collections.abc.Mapping`, which means it
    can be used like a readonly dict. Writing to it is handled by
    :meth:`add_src`, which records the name of the source the values are
    coming from. Nested levels are returned as plain dictionaries.

    Subclasses docstrings can use the ``{generated_help}`` placeholder, that
    will be replaced by the list of allowed keys.
    """

    STRUCTURE = None
    """
    :class:`TopLevelKeyDesc` describing the allowed keys.
    """

    DEFAULT_SRC = {}
    """
    Source added by default with the lowest priority.
    """

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.STRUCTURE is not None and cls.__doc__:
            help_ = textwrap.indent(cls.STRUCTURE.get_help(), cls.STRUCTURE.INDENTATION)
            cls.__doc__ = cls.__doc__.replace('{generated_help}', '\n' + help_)

    def __init__(self, conf=None, src='user', add_default_src=True):
        self._sources = []
        self._fallback_sources = []
        if add_default_src and self.DEFAULT_SRC:
            self.add_src('default', self.DEFAULT_SRC, fallback=True)
        if conf is not None:
            self.add_src(src, conf)

    def add_src(self, src, conf, filter_none=False, fallback=False):
        """
        Add a source of configuration.

        :param src: Name of the source to add
        :type src: str

        :param conf: Nested mapping of key/values to overlay
        :type conf: collections.abc.Mapping

        :param filter_none: Ignores the keys that have a ``None`` value.
        :type filter_none: bool

        :param fallback: If True, the source will be added as a fallback, which
            means at the end of the priority list. By default, the source will
            have the highest priority.
        :type fallback: bool
        """
        if isinstance(conf, SimpleConf):
            conf = conf.to_map()
        conf = _to_plain(conf)
        if filter_none:
            conf = _filter_none(conf)

        self.STRUCTURE.validate_val(conf)
        self.logger.debug(f'{self.__class__.__qualname__}: adding source "{src}": {conf}')

        if fallback:
            self._fallback_sources.insert(0, (src, conf))
        else:
            self._sources.append((src, conf))

    @property
    def sources(self):
        """
        Names of the sources, from the lowest priority to the highest.
        """
        return [
            src
            for src, _ in self._fallback_sources + self._sources
        ]

    def to_map(self):
        """
        Merged content of all the sources, as a nested dictionary.
        """
        merged = {}
        for _, conf in self._fallback_sources + self._sources:
            merged = _merge(merged, conf)
        return merged

    def __getitem__(self, key):
        self.STRUCTURE.check_allowed_key(key)
        return copy.deepcopy(self.to_map()[key])

    def __iter__(self):
        return iter(self.to_map())

    def __len__(self):
        return len(self.to_map())

    def get_nested_key(self, key_path, default=None):
        """
        Get a nested key, or ``default`` if any level is missing.

        :param key_path: List of keys from the top-level.
        :type key_path: list(str)
        """
        try:
            return copy.deepcopy(get_nested_key(self.to_map(), key_path))
        except KeyError:
            return default

    def __copy__(self):
        new = self.__class__(add_default_src=False)
        new._sources = list(self._sources)
        new._fallback_sources = list(self._fallback_sources)
        return new

    def __str__(self):
        return self.to_yaml_map_str()

    @classmethod
    def get_help(cls):
        return cls.STRUCTURE.get_help()

    @classmethod
    def from_yaml_map(cls, path, add_default_src=True):
        """
        Load the configuration from a YAML file. The content is hosted under the
        top-level key specified in ``STRUCTURE``.

        :param path: Path to the YAML file
        :type path: str

        :param add_default_src: Add a default source if available for that
            class.
        :type add_default_src: bool
        """
        toplevel_key = cls.STRUCTURE.name
        mapping = _YAMLLoader.load(path)
        if not isinstance(mapping, Mapping):
            raise ValueError(f'Top-level object is expected to be a mapping but got: {mapping.__class__.__qualname__}')

        try:
            data = mapping[toplevel_key]
        except KeyError:
            # pylint: disable=raise-missing-from
            raise TopLevelKeyError(toplevel_key)

        data = data or {}
        # "unwrap" an extra layer of toplevel key, to play well with !include
        if len(data) == 1 and toplevel_key in data:
            data = data[toplevel_key] or {}

        conf = cls(add_default_src=add_default_src)
        conf.add_src(os.path.basename(str(path)), data)
        return conf

    @property
    def as_yaml_map(self):
        """
        Give a mapping suitable for storing in a YAML configuration file.
        """
        return {self.STRUCTURE.name: self.to_map()}

    def to_yaml_map(self, path):
        """
        Write a configuration file loadable with :meth:`from_yaml_map`.

        :param path: Path to the file to write to.
        :type path: str
        """
        with open(path, 'w', encoding=_YAMLLoader.YAML_ENCODING) as f:
            _YAMLLoader.dump(self.as_yaml_map, f)

    def to_yaml_map_str(self):
        """
        Return the content of the file that would be create by
        :meth:`to_yaml_map` in a string.
        """
        buff = io.StringIO()
        _YAMLLoader.dump(self.as_yaml_map, buff)
        return buff.getvalue()

# vim :set tabstop=4 shiftwidth=4 textwidth=80 expandtab
