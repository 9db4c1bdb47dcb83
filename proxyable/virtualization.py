"""
Virtual fields.

A VirtualContext adds computed fields to a target without touching its
class or keys. While ``virtual.call(body)`` runs, reading a virtual field
through ``virtual.handle`` returns its stored value or computes it, writing
it stores the value, and enumeration lists it. Aliases (``redirects``) make a
second name point at a virtual field. Outside ``call`` the handle behaves like
the bare target.

Storage decides where written and memoized values live:

    context    per ``call``; gone when the call returns
    target     on the target, under ``__virtual_<name>`` (hidden from enumeration)
    external   in a caller-supplied mutable mapping

Computed values are memoized by default for target and external storage, and
for context storage only with ``memoize=True``. A ``ttl`` (seconds) expires
context-cached values.

Example:
    user = {"first": "Ada", "last": "Lovelace"}
    virtual = create_virtual_context(user, fields={
        "full_name": lambda t: f"{t['first']} {t['last']}",
    })
    virtual.call(lambda: virtual.handle["full_name"])   # "Ada Lovelace"
    "full_name" in user                                 # False
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, MutableMapping, Optional, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import ConfigurationError, InvalidArgumentError, OperationDeniedError
from proxyable.kernel import Kernel, MediatedHandle
from proxyable.operations import OperationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORAGE_CONTEXT = "context"
STORAGE_TARGET = "target"
STORAGE_EXTERNAL = "external"
STORAGE_KINDS = (STORAGE_CONTEXT, STORAGE_TARGET, STORAGE_EXTERNAL)

TARGET_KEY_PREFIX = "__virtual_"

_MISSING = object()


@dataclass(frozen=True)
class VirtualField:
    """Definition of one virtual field.

    Attributes:
        compute: ``target -> value``; None for a field that only holds
            written values
        storage: "context", "target" or "external"
        memoize: Store computed values; None picks the storage's default
        ttl: Seconds a context-cached value stays valid
    """
    compute: Optional[Callable[[Any], Any]] = None
    storage: str = STORAGE_CONTEXT
    memoize: Optional[bool] = None
    ttl: Optional[float] = None

    def __post_init__(self):
        if self.storage not in STORAGE_KINDS:
            raise InvalidArgumentError(
                f"Unknown storage: {self.storage!r}",
                parameter="storage",
                suggestion=f"Use one of: {', '.join(STORAGE_KINDS)}",
            )
        if self.ttl is not None and self.ttl <= 0:
            raise InvalidArgumentError("ttl must be positive", parameter="ttl")

    @property
    def memoized(self) -> bool:
        if self.memoize is None:
            return self.storage != STORAGE_CONTEXT
        return self.memoize


FieldSpec = Union[VirtualField, Callable[[Any], Any], Mapping[str, Any]]


def _as_field(name: str, spec: FieldSpec) -> VirtualField:
    if isinstance(spec, VirtualField):
        return spec
    if isinstance(spec, Mapping):
        return VirtualField(**spec)
    if callable(spec):
        return VirtualField(compute=spec)
    raise InvalidArgumentError(
        f"Virtual field {name!r} must be a VirtualField, a mapping or a callable",
        parameter="fields",
    )


@dataclass
class _Activation:
    cache: Dict[str, Any] = field(default_factory=dict)
    cached_at: Dict[str, float] = field(default_factory=dict)


class VirtualReflector:
    """Default operations of a virtual context's kernel."""

    def __init__(self, virtual: "VirtualContext"):
        self._virtual = virtual

    def _resolve(self, key: Any) -> Optional[str]:
        """Name of the virtual field ``key`` addresses while a call is active."""
        if not self._virtual.is_active():
            return None
        return self._virtual.resolve(key)

    def get(self, target: Any, key: Any) -> Any:
        name = self._resolve(key)
        if name is None:
            return reflect.get(target, key)
        return self._virtual._read(name)

    def set(self, target: Any, key: Any, value: Any) -> None:  # noqa: A003
        name = self._resolve(key)
        if name is None:
            reflect.set(target, key, value)
            return
        self._virtual._store(name, value)

    def has(self, target: Any, key: Any) -> bool:
        return self._resolve(key) is not None or reflect.has(target, key)

    def delete(self, target: Any, key: Any) -> None:
        name = self._resolve(key)
        if name is None:
            reflect.delete(target, key)
            return
        self._virtual._forget(name)

    def own_keys(self, target: Any) -> List[Any]:
        real = reflect.own_keys(target)
        if not self._virtual.is_active():
            return real
        visible = [k for k in real if not (isinstance(k, str) and k.startswith(TARGET_KEY_PREFIX))]
        extra = list(self._virtual.fields) + list(self._virtual.redirects)
        return visible + [k for k in extra if k not in visible]

    def describe(self, target: Any, key: Any) -> Optional[reflect.Descriptor]:
        name = self._resolve(key)
        if name is None:
            return reflect.describe(target, key)
        writable = self._virtual.fields[name].storage in (STORAGE_TARGET, STORAGE_EXTERNAL)
        return reflect.Descriptor(value=self._virtual._read(name), writable=writable, enumerable=True)

    def invoke(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        return reflect.invoke(target, *args, **kwargs)

    def construct(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        return reflect.construct(target, *args, **kwargs)


class VirtualContext:
    """Virtual fields over one target.

    Args:
        target: The real target
        fields: ``name -> VirtualField`` (or a compute callable, or a mapping
            of VirtualField arguments)
        storage: Mutable mapping backing "external" fields
        redirects: ``alias -> field name``
        clock: Seconds source for ttl checks
        strict: Strictness of the context's handle (see Kernel)

    Raises:
        InvalidArgumentError: A redirect names an unknown field
    """

    def __init__(
        self,
        target: Any,
        fields: Optional[Mapping[str, FieldSpec]] = None,
        storage: Optional[MutableMapping[str, Any]] = None,
        redirects: Optional[Mapping[Any, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        strict: bool = True,
    ):
        self.target = target
        self.fields: Dict[str, VirtualField] = {
            name: _as_field(name, spec) for name, spec in (fields or {}).items()
        }
        self.storage = storage
        self.redirects: Dict[Any, str] = dict(redirects or {})
        for alias, name in self.redirects.items():
            if name not in self.fields:
                raise InvalidArgumentError(
                    f"Redirect {alias!r} points at unknown virtual field {name!r}",
                    parameter="redirects",
                )
        self.clock = clock
        self.context = ContextSlot("virtual")
        self.kernel = Kernel(target, strict=strict, reflector=VirtualReflector(self))

    def __repr__(self) -> str:
        return f"VirtualContext(fields={sorted(self.fields)}, active={self.is_active()})"

    @property
    def handle(self) -> MediatedHandle:
        return self.kernel.handle

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` with virtual fields enabled and a fresh context cache."""
        return self.context.call(_Activation(), body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        return await self.context.acall(_Activation(), body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def resolve(self, key: Any) -> Optional[str]:
        """The virtual field ``key`` names directly or through a redirect, or None."""
        try:
            name = self.redirects.get(key, key)
            return name if name in self.fields else None
        except TypeError:
            return None

    # ========================================================================
    # STORAGE
    # ========================================================================

    def _stored(self, name: str) -> Any:
        definition = self.fields[name]
        if definition.storage == STORAGE_CONTEXT:
            state: _Activation = self.context.current()
            if name not in state.cache:
                return _MISSING
            cached_at = state.cached_at.get(name)
            if definition.ttl is not None and cached_at is not None and self.clock() - cached_at > definition.ttl:
                logger.debug(f"Virtual field {name!r} expired")
                del state.cache[name]
                del state.cached_at[name]
                return _MISSING
            return state.cache[name]
        if definition.storage == STORAGE_TARGET:
            key = TARGET_KEY_PREFIX + name
            return reflect.get(self.target, key) if reflect.has(self.target, key) else _MISSING
        if self.storage is not None and name in self.storage:
            return self.storage[name]
        return _MISSING

    def _store(self, name: str, value: Any) -> None:
        definition = self.fields[name]
        if definition.storage == STORAGE_CONTEXT:
            state: _Activation = self.context.current()
            state.cache[name] = value
            state.cached_at[name] = self.clock()
        elif definition.storage == STORAGE_TARGET:
            reflect.set(self.target, TARGET_KEY_PREFIX + name, value)
        elif self.storage is not None:
            self.storage[name] = value
        else:
            raise OperationDeniedError(
                f'Virtual field "{name}" uses external storage but none was configured',
                kind=OperationKind.WRITE,
                key=name,
                reason="no external storage",
            )

    def _forget(self, name: str) -> None:
        definition = self.fields[name]
        if definition.storage == STORAGE_CONTEXT:
            self.invalidate_cache(name)
        elif definition.storage == STORAGE_TARGET:
            key = TARGET_KEY_PREFIX + name
            if reflect.has(self.target, key):
                reflect.delete(self.target, key)
        elif self.storage is not None:
            self.storage.pop(name, None)

    def _read(self, name: str) -> Any:
        value = self._stored(name)
        if value is not _MISSING:
            return value
        definition = self.fields[name]
        if definition.compute is None:
            return reflect.get(self.target, name)
        value = definition.compute(self.target)
        if definition.memoized and (definition.storage != STORAGE_EXTERNAL or self.storage is not None):
            self._store(name, value)
        return value

    # ========================================================================
    # PUBLIC HELPERS
    # ========================================================================

    def invalidate_cache(self, name: Optional[str] = None) -> None:
        """Drop one (or every) context-cached value; no-op outside ``call``."""
        state: Optional[_Activation] = self.context.current_or_none()
        if state is None:
            return
        if name is None:
            state.cache.clear()
            state.cached_at.clear()
        else:
            state.cache.pop(name, None)
            state.cached_at.pop(name, None)

    def get_virtual_value(self, name: str) -> Any:
        """Compute a field afresh, bypassing storage; None without a compute function."""
        definition = self.fields.get(name)
        if definition is None or definition.compute is None:
            return None
        return definition.compute(self.target)

    def get_memoized(self, name: str) -> Any:
        state: Optional[_Activation] = self.context.current_or_none()
        if state is None:
            return None
        return state.cache.get(name)

    def set_storage(self, name: str, value: Any) -> None:
        if self.storage is None:
            raise ConfigurationError(
                "No external storage configured",
                suggestion="Pass storage={} (or any mutable mapping) to the VirtualContext",
            )
        self.storage[name] = value

    def get_from_storage(self, name: str) -> Any:
        if self.storage is None:
            return None
        return self.storage.get(name)

    def is_virtual_field(self, name: Any) -> bool:
        try:
            return name in self.fields
        except TypeError:
            return False

    def get_virtual_fields(self) -> List[str]:
        return list(self.fields)


def create_virtual_context(
    target: Any,
    fields: Optional[Mapping[str, FieldSpec]] = None,
    storage: Optional[MutableMapping[str, Any]] = None,
    redirects: Optional[Mapping[Any, str]] = None,
    **options: Any,
) -> VirtualContext:
    """Shorthand for ``VirtualContext(target, fields, storage, redirects, **options)``."""
    return VirtualContext(target, fields=fields, storage=storage, redirects=redirects, **options)
