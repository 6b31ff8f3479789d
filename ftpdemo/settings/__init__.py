from __future__ import annotations

import copy
import json
from collections.abc import Iterator, Mapping, MutableMapping
from importlib import import_module
from typing import TYPE_CHECKING, Any, Union

from ftpdemo.settings import default_settings

_SettingsKeyT = Union[bool, float, int, str, None]

if TYPE_CHECKING:
    from types import ModuleType

    # typing.Self requires Python 3.11
    from typing_extensions import Self


SETTINGS_PRIORITIES: dict[str, int] = {
    "default": 0,
    "project": 20,
    "cmdline": 40,
}


def get_settings_priority(priority: int | str) -> int:
    """
    Look up a named priority in :attr:`SETTINGS_PRIORITIES`, or return a
    numerical priority unchanged.
    """
    if isinstance(priority, str):
        return SETTINGS_PRIORITIES[priority]
    return priority


class SettingsAttribute:
    """A setting value together with the priority it was stored with."""

    def __init__(self, value: Any, priority: int):
        self.value: Any = value
        self.priority: int = priority

    def set(self, value: Any, priority: int) -> None:
        """Sets value if priority is higher or equal than current priority."""
        if priority >= self.priority:
            self.value = value
            self.priority = priority

    def __repr__(self) -> str:
        return f"<SettingsAttribute value={self.value!r} priority={self.priority}>"


class BaseSettings(MutableMapping[_SettingsKeyT, Any]):
    """
    Dictionary-like storage that keeps a priority next to every value, so
    that command line options win over project values, which in turn win
    over the defaults, regardless of the order they are applied in.

    Instances can be frozen, after which any modification raises
    :exc:`TypeError`.
    """

    def __init__(self, values: Mapping[_SettingsKeyT, Any] | None = None, priority: int | str = "project"):
        self.frozen: bool = False
        self.attributes: dict[_SettingsKeyT, SettingsAttribute] = {}
        if values:
            self.update(values, priority)

    def __getitem__(self, opt_name: _SettingsKeyT) -> Any:
        if opt_name not in self:
            return None
        return self.attributes[opt_name].value

    def __contains__(self, name: Any) -> bool:
        return name in self.attributes

    def get(self, name: _SettingsKeyT, default: Any = None) -> Any:
        return self[name] if self[name] is not None else default

    def getbool(self, name: _SettingsKeyT, default: bool = False) -> bool:
        """
        Get a setting value as a boolean.

        ``1``, ``'1'``, ``True`` and ``'True'`` return ``True``, while ``0``,
        ``'0'``, ``False``, ``'False'`` and ``None`` return ``False``.
        """
        got = self.get(name, default)
        try:
            return bool(int(got))
        except ValueError:
            if got in ("True", "true"):
                return True
            if got in ("False", "false"):
                return False
            raise ValueError(
                "Supported values for boolean settings "
                "are 0/1, True/False, '0'/'1', "
                "'True'/'False' and 'true'/'false'"
            )

    def getint(self, name: _SettingsKeyT, default: int = 0) -> int:
        return int(self.get(name, default))

    def getlist(
        self, name: _SettingsKeyT, default: list[Any] | None = None
    ) -> list[Any]:
        """
        Get a setting value as a list. Strings are split by ``","``, so
        ``"100,256"`` coming from the command line becomes ``["100", "256"]``.
        """
        value = self.get(name, default or [])
        if not value:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return list(value)

    def getdict(
        self, name: _SettingsKeyT, default: dict[Any, Any] | None = None
    ) -> dict[Any, Any]:
        """
        Get a setting value as a dictionary. A string value is parsed as JSON.
        """
        value = self.get(name, default or {})
        if isinstance(value, str):
            value = json.loads(value)
        return dict(value)

    def getpriority(self, name: _SettingsKeyT) -> int | None:
        if name not in self:
            return None
        return self.attributes[name].priority

    def __setitem__(self, name: _SettingsKeyT, value: Any) -> None:
        self.set(name, value)

    def set(
        self, name: _SettingsKeyT, value: Any, priority: int | str = "project"
    ) -> None:
        """
        Store a key/value attribute with a given priority. The value is only
        replaced when ``priority`` is at least the stored one.
        """
        self._assert_mutability()
        priority = get_settings_priority(priority)
        if name not in self:
            self.attributes[name] = SettingsAttribute(value, priority)
        else:
            self.attributes[name].set(value, priority)

    def setdefault(self, name: _SettingsKeyT, default: Any = None, priority: int | str = "project") -> Any:
        if name not in self:
            self.set(name, default, priority)
            return default
        return self.attributes[name].value

    def setmodule(self, module: ModuleType | str, priority: int | str = "project") -> None:
        """
        Store every uppercase attribute of ``module`` with ``priority``.
        """
        self._assert_mutability()
        if isinstance(module, str):
            module = import_module(module)
        for key in dir(module):
            if key.isupper():
                self.set(key, getattr(module, key), priority)

    def update(self, values: Any, priority: int | str = "project") -> None:  # type: ignore[override]
        """
        Store key/value pairs from a mapping, or from a JSON encoded string,
        with ``priority``. :class:`BaseSettings` instances keep their own
        per-key priorities.
        """
        self._assert_mutability()
        if isinstance(values, str):
            values = json.loads(values)
        if values is not None:
            if isinstance(values, BaseSettings):
                for name, value in values.items():
                    self.set(name, value, values.getpriority(name) or 0)
            else:
                for name, value in values.items():
                    self.set(name, value, priority)

    def delete(self, name: _SettingsKeyT, priority: int | str = "project") -> None:
        if name not in self:
            raise KeyError(name)
        self._assert_mutability()
        priority = get_settings_priority(priority)
        if priority >= self.attributes[name].priority:
            del self.attributes[name]

    def __delitem__(self, name: _SettingsKeyT) -> None:
        self._assert_mutability()
        del self.attributes[name]

    def _assert_mutability(self) -> None:
        if self.frozen:
            raise TypeError("Trying to modify an immutable Settings object")

    def copy(self) -> Self:
        return copy.deepcopy(self)

    def freeze(self) -> None:
        self.frozen = True

    def frozencopy(self) -> Self:
        copy = self.copy()
        copy.freeze()
        return copy

    def __iter__(self) -> Iterator[_SettingsKeyT]:
        return iter(self.attributes)

    def __len__(self) -> int:
        return len(self.attributes)

    def copy_to_dict(self) -> dict[_SettingsKeyT, Any]:
        return {name: self[name] for name in self}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.copy_to_dict()!r}>"


class Settings(BaseSettings):
    """
    :class:`BaseSettings` pre-populated with
    :mod:`ftpdemo.settings.default_settings` at ``default`` priority.
    """

    def __init__(self, values: Mapping[_SettingsKeyT, Any] | None = None, priority: int | str = "project"):
        super().__init__()
        self.setmodule(default_settings, "default")
        self.update(values, priority)
