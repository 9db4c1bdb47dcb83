"""
Reflective default operations.

These functions perform each operation kind directly on a raw target. The
kernel falls back to them when no handler decides an operation, and
capabilities use them when they need to observe the target without going
through a mediated handle.

A "property" is a key when the target is a ``Mapping`` and an attribute
otherwise.
"""

import inspect
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, List, Optional


@dataclass(frozen=True)
class Descriptor:
    """Description of one property of a target.

    Attributes:
        value: Current value of the property
        writable: Whether an ordinary write would succeed
        enumerable: Whether the property shows up in own_keys()
    """
    value: Any
    writable: bool = True
    enumerable: bool = True


def is_mapping(target: Any) -> bool:
    return isinstance(target, Mapping)


def is_constructible(target: Any) -> bool:
    """True when calling the target builds an instance (it is a class)."""
    return inspect.isclass(target)


def get(target: Any, key: Any) -> Any:
    """Read a property.

    Raises:
        KeyError: Missing key on a mapping target
        AttributeError: Missing attribute on any other target
    """
    if is_mapping(target):
        return target[key]
    return getattr(target, key)


def set(target: Any, key: Any, value: Any) -> None:  # noqa: A001
    if is_mapping(target):
        if not isinstance(target, MutableMapping):
            raise TypeError(f"{type(target).__name__} does not support item assignment")
        target[key] = value
    else:
        setattr(target, key, value)


def has(target: Any, key: Any) -> bool:
    if is_mapping(target):
        return key in target
    return isinstance(key, str) and hasattr(target, key)


def delete(target: Any, key: Any) -> None:
    """Delete a property.

    Raises:
        KeyError / AttributeError: The property does not exist
    """
    if is_mapping(target):
        if not isinstance(target, MutableMapping):
            raise TypeError(f"{type(target).__name__} does not support item deletion")
        del target[key]
    else:
        delattr(target, key)


def own_keys(target: Any) -> List[Any]:
    """Enumerate the target's own properties in definition order.

    Mappings yield their keys; other objects yield the keys of their instance
    ``__dict__`` (or ``__slots__`` values that are set). Callables without
    instance state enumerate as empty.
    """
    if is_mapping(target):
        return list(target.keys())
    keys: List[Any] = []
    instance_dict = getattr(target, "__dict__", None)
    if isinstance(instance_dict, dict) and not inspect.isclass(target):
        keys.extend(instance_dict.keys())
    for slot in getattr(type(target), "__slots__", ()):
        if slot not in keys and hasattr(target, slot):
            keys.append(slot)
    return keys


def describe(target: Any, key: Any) -> Optional[Descriptor]:
    """Return a Descriptor for an own property, or None if it does not exist."""
    if is_mapping(target):
        if key not in target:
            return None
        return Descriptor(
            value=target[key],
            writable=isinstance(target, MutableMapping),
            enumerable=True,
        )

    if not isinstance(key, str):
        return None
    instance_dict = getattr(target, "__dict__", None)
    if isinstance(instance_dict, dict) and key in instance_dict:
        return Descriptor(value=instance_dict[key], writable=True, enumerable=True)

    try:
        static = inspect.getattr_static(target, key)
    except AttributeError:
        return None
    if isinstance(static, property):
        return Descriptor(value=getattr(target, key), writable=static.fset is not None, enumerable=False)
    return Descriptor(value=getattr(target, key), writable=True, enumerable=False)


def invoke(target: Any, *args: Any, **kwargs: Any) -> Any:
    return target(*args, **kwargs)


def construct(target: Any, *args: Any, **kwargs: Any) -> Any:
    return target(*args, **kwargs)
