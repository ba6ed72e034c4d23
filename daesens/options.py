"""
Options registry.

Options are declared once with a type, a default and a description, then
set by name. Reading an option that was never declared, or that has neither
a value nor a default, is a configuration error.

Example:
    >>> opts = OptionsFunctionality()
    >>> opts.add_option("tf", float, 1.0, "End of the time horizon")
    >>> opts.set_option("tf", 10)
    >>> opts.get_option("tf")
    10.0
"""

import copy
from dataclasses import dataclass

from beartype.typing import Any, Dict, Optional

from .errors import ConfigurationError

__all__ = ["OptionSpec", "OptionsFunctionality", "NO_DEFAULT"]


class _NoDefault:
    def __repr__(self) -> str:
        return "<no default>"


NO_DEFAULT = _NoDefault()


@dataclass(frozen=True)
class OptionSpec:
    """Declaration of a single option."""

    name: str
    type: type
    default: Any = NO_DEFAULT
    description: str = ""

    def coerce(self, value: Any) -> Any:
        """Check ``value`` against the declared type, widening int to float."""
        if self.type is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        if self.type is dict and isinstance(value, dict):
            return dict(value)
        if not isinstance(value, self.type):
            raise ConfigurationError(
                f"Option '{self.name}' expects a value of type {self.type.__name__}, "
                f"got {type(value).__name__}"
            )
        return value


class OptionsFunctionality:
    """Base class for objects carrying a set of declared options."""

    def __init__(self) -> None:
        self._option_specs: Dict[str, OptionSpec] = {}
        self._option_values: Dict[str, Any] = {}
        self.add_option("name", str, "unnamed_shared_object", "name of the object")

    def add_option(self, name: str, type_: type, default: Any = NO_DEFAULT, description: str = "") -> None:
        """Declare an option. Redeclaring replaces the default."""
        spec = OptionSpec(name, type_, default, description)
        if default is not NO_DEFAULT:
            spec.coerce(default)
        self._option_specs[name] = spec

    def has_option(self, name: str) -> bool:
        return name in self._option_specs

    def has_set_option(self, name: str) -> bool:
        """True if the option was explicitly set (defaults do not count)."""
        if not self.has_option(name):
            raise ConfigurationError(f"has_set_option: no such option '{name}'")
        return name in self._option_values

    def set_option(self, name: str, value: Any) -> None:
        spec = self._option_specs.get(name)
        if spec is None:
            raise ConfigurationError(
                f"Unknown option: '{name}'. Available options: {sorted(self._option_specs)}"
            )
        self._option_values[name] = spec.coerce(value)

    def set_options(self, options: Dict[str, Any]) -> None:
        for name, value in options.items():
            self.set_option(name, value)

    def get_option(self, name: str) -> Any:
        spec = self._option_specs.get(name)
        if spec is None:
            raise ConfigurationError(f"Option: '{name}' does not exist.")
        if name in self._option_values:
            return self._option_values[name]
        if spec.default is NO_DEFAULT:
            raise ConfigurationError(f"Option: '{name}' has not been set.")
        return copy.copy(spec.default)

    def dictionary(self) -> Dict[str, Any]:
        """All options that currently have a value (set or default)."""
        ret = {}
        for name, spec in self._option_specs.items():
            if name in self._option_values:
                ret[name] = self._option_values[name]
            elif spec.default is not NO_DEFAULT:
                ret[name] = copy.copy(spec.default)
        return ret

    def copy_options(self, other: "OptionsFunctionality", skip_unknown: bool = False) -> None:
        """Copy every explicitly set option of ``other`` onto this object."""
        for name, value in other._option_values.items():
            if skip_unknown and not self.has_option(name):
                continue
            self.set_option(name, value)

    def option_description(self, name: str) -> Optional[str]:
        spec = self._option_specs.get(name)
        return None if spec is None else spec.description

    def print_options(self) -> None:
        print('"Option name" [type] = value')
        for name in sorted(self._option_specs):
            spec = self._option_specs[name]
            if name in self._option_values:
                value = self._option_values[name]
            elif spec.default is NO_DEFAULT:
                value = "not set"
            else:
                value = spec.default
            print(f'  "{name}" [{spec.type.__name__}] = {value}')
