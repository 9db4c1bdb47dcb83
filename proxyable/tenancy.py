"""
Multi-tenant behavioural views.

A TenantView gives one tenant its own view of a shared target without copying
it: keys can be hidden, virtual (static or computed) properties injected, and
values transformed on the way in and out. Each view has its own private Kernel
whose default operations apply the tenant's rules, so several views can wrap
the same target at once and other capabilities can still be registered on a
view's kernel.

Example:
    account = {"id": 1, "balance": 100, "internal_notes": "vip"}
    view = create_tenant_view(
        account,
        "acme",
        visible_keys={"id", "balance"},
        virtual_properties={"currency": "EUR"},
    )

    view.proxy["balance"]          # 100
    view.proxy["currency"]         # "EUR"
    list(view.proxy)               # ["id", "balance", "currency"]
    view.proxy["internal_notes"]   # raises PropertyNotVisibleError
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import InvalidArgumentError, OperationDeniedError, PropertyNotVisibleError
from proxyable.kernel import Kernel, MediatedHandle
from proxyable.operations import OperationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

_tenant_slot = ContextSlot("tenant")

Visibility = Union[None, Collection[Any], Callable[[Any], bool]]
Transform = Callable[[Any, Any, MediatedHandle], Any]


@dataclass
class TenantConfig:
    """Per-tenant view configuration.

    Attributes:
        visible_keys: Keys of the target the tenant may see, as a collection
            or a ``key -> bool`` predicate; None means every key
        virtual_properties: Extra read-only properties; a callable value is
            computed on each read from the tenant handle
        transform_get: ``(key, value, handle) -> value`` applied to reads
        transform_set: ``(key, value, handle) -> value`` applied to writes
        metadata: Free-form tenant information (name, plan, ...)
    """
    visible_keys: Visibility = None
    virtual_properties: Dict[Any, Any] = field(default_factory=dict)
    transform_get: Optional[Transform] = None
    transform_set: Optional[Transform] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "TenantConfig":
        """Build a config from a mapping plus keyword overrides; unknown keys are ignored."""
        merged = dict(options or {})
        merged.update(overrides)
        known = {f.name for f in dataclasses.fields(cls)}
        config = cls(**{k: v for k, v in merged.items() if k in known and v is not None})
        config.virtual_properties = dict(config.virtual_properties)
        config.metadata = dict(config.metadata)
        return config

    def is_visible(self, key: Any) -> bool:
        if self.visible_keys is None:
            return True
        if callable(self.visible_keys):
            return bool(self.visible_keys(key))
        return key in self.visible_keys

    def is_virtual(self, key: Any) -> bool:
        try:
            return key in self.virtual_properties
        except TypeError:
            return False


class TenantReflector:
    """Default operations of a tenant view's kernel.

    Each method mirrors its ``proxyable.reflect`` counterpart with the
    tenant's visibility, virtual properties and transforms applied.
    """

    def __init__(self, view: "TenantView"):
        self._view = view

    @property
    def _config(self) -> TenantConfig:
        return self._view._config

    def _virtual_value(self, key: Any) -> Any:
        virtual = self._config.virtual_properties[key]
        return virtual(self._view.proxy) if callable(virtual) else virtual

    def _not_visible(self, key: Any, kind: OperationKind) -> PropertyNotVisibleError:
        return PropertyNotVisibleError(key, self._view.tenant_id, kind=kind)

    def get(self, target: Any, key: Any) -> Any:
        if self._config.is_virtual(key):
            return self._virtual_value(key)
        if not self._config.is_visible(key):
            raise self._not_visible(key, OperationKind.READ)
        value = reflect.get(target, key)
        if self._config.transform_get is not None:
            return self._config.transform_get(key, value, self._view.proxy)
        return value

    def set(self, target: Any, key: Any, value: Any) -> None:  # noqa: A003
        if self._config.is_virtual(key):
            raise OperationDeniedError(
                f"Cannot set virtual property: {key!s}",
                kind=OperationKind.WRITE,
                key=key,
                reason="virtual property",
            )
        if not self._config.is_visible(key):
            raise self._not_visible(key, OperationKind.WRITE)
        if self._config.transform_set is not None:
            value = self._config.transform_set(key, value, self._view.proxy)
        reflect.set(target, key, value)

    def has(self, target: Any, key: Any) -> bool:
        if self._config.is_virtual(key):
            return True
        if not self._config.is_visible(key):
            return False
        return reflect.has(target, key)

    def delete(self, target: Any, key: Any) -> None:
        if self._config.is_virtual(key):
            raise OperationDeniedError(
                f"Cannot delete virtual property: {key!s}",
                kind=OperationKind.DELETE,
                key=key,
                reason="virtual property",
            )
        if not self._config.is_visible(key):
            raise self._not_visible(key, OperationKind.DELETE)
        reflect.delete(target, key)

    def own_keys(self, target: Any) -> List[Any]:
        visible = [k for k in reflect.own_keys(target) if self._config.is_visible(k)]
        return list(dict.fromkeys(visible + list(self._config.virtual_properties)))

    def describe(self, target: Any, key: Any) -> Optional[reflect.Descriptor]:
        if self._config.is_virtual(key):
            return reflect.Descriptor(value=self._virtual_value(key), writable=False, enumerable=True)
        if not self._config.is_visible(key):
            return None
        return reflect.describe(target, key)

    def invoke(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        with _tenant_slot.activate(self._view):
            return reflect.invoke(target, *args, **kwargs)

    def construct(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        with _tenant_slot.activate(self._view):
            return reflect.construct(target, *args, **kwargs)


class TenantView:
    """One tenant's view of a shared target.

    Attributes:
        tenant_id: The tenant's identifier
        kernel: The view's private Kernel
        proxy: The tenant handle
    """

    def __init__(self, target: Any, tenant_id: str, config: Optional[TenantConfig] = None, strict: bool = True):
        if not tenant_id:
            raise InvalidArgumentError("tenant_id is required", parameter="tenant_id")
        self.target = target
        self.tenant_id = tenant_id
        self._config = config or TenantConfig()
        self.kernel = Kernel(target, strict=strict, reflector=TenantReflector(self))
        logger.debug(f"Created tenant view {tenant_id!r}")

    def __repr__(self) -> str:
        return f"TenantView(tenant_id={self.tenant_id!r})"

    @property
    def proxy(self) -> MediatedHandle:
        return self.kernel.handle

    def call(self, body: Callable[[MediatedHandle], T]) -> T:
        """Run ``body(proxy)`` with this tenant as ``current_tenant()``."""
        if not callable(body):
            raise InvalidArgumentError("Argument must be a function", parameter="body")
        with _tenant_slot.activate(self):
            return body(self.proxy)

    def get_metadata(self) -> Dict[str, Any]:
        return dict(self._config.metadata)

    def get_config(self) -> TenantConfig:
        """Return a copy of the current configuration."""
        return dataclasses.replace(
            self._config,
            virtual_properties=dict(self._config.virtual_properties),
            metadata=dict(self._config.metadata),
        )

    def update_config(self, changes: Optional[Mapping[str, Any]] = None, **overrides: Any) -> None:
        """Apply a partial configuration update.

        ``virtual_properties`` and ``metadata`` are merged into the existing
        values; every other field is replaced. Unknown keys are ignored.
        """
        merged = dict(changes or {})
        merged.update(overrides)
        if "visible_keys" in merged:
            self._config.visible_keys = merged["visible_keys"]
        if merged.get("virtual_properties") is not None:
            self._config.virtual_properties.update(merged["virtual_properties"])
        if "transform_get" in merged:
            self._config.transform_get = merged["transform_get"]
        if "transform_set" in merged:
            self._config.transform_set = merged["transform_set"]
        if merged.get("metadata") is not None:
            self._config.metadata.update(merged["metadata"])
        logger.debug(f"Updated tenant view {self.tenant_id!r}: {sorted(merged)}")


def create_tenant_view(
    target: Any,
    tenant_id: str,
    config: Optional[Mapping[str, Any]] = None,
    **overrides: Any,
) -> TenantView:
    """Create a TenantView over ``target``.

    Args:
        target: The shared target
        tenant_id: Required tenant identifier
        config: Mapping of TenantConfig fields; unknown keys are ignored
        **overrides: Individual config overrides

    Raises:
        InvalidArgumentError: If ``tenant_id`` is empty
    """
    return TenantView(target, tenant_id, TenantConfig.from_mapping(config, **overrides))


def create_tenant_views(target: Any, configs: Mapping[str, Mapping[str, Any]]) -> Dict[str, TenantView]:
    """Create one view per ``tenant_id -> config`` entry over the same target."""
    return {tenant_id: create_tenant_view(target, tenant_id, cfg) for tenant_id, cfg in configs.items()}


def current_tenant() -> Optional[TenantView]:
    """The TenantView whose ``call`` (or invocation) encloses the caller, if any."""
    return _tenant_slot.current_or_none()
