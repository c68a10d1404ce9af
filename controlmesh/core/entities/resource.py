"""
Resource entity definitions: identities, unit templates and desired specs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Tuple, Union

DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """Opaque key of a resource, unique within its namespace."""

    namespace: str
    name: str

    def __post_init__(self) -> None:
        for part, value in (("namespace", self.namespace), ("name", self.name)):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Resource {part} must be a non-empty string")
            if "/" in value:
                raise ValueError(f"Resource {part} must not contain '/': {value!r}")

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __str__(self) -> str:
        return self.key

    @classmethod
    def parse(cls, value: Union[str, "ResourceIdentity"]) -> "ResourceIdentity":
        """
        Accept ``"name"``, ``"namespace/name"`` or an existing identity.
        """
        if isinstance(value, ResourceIdentity):
            return value
        if not isinstance(value, str):
            raise TypeError(f"Cannot build a ResourceIdentity from {type(value).__name__}")
        namespace, sep, name = value.strip().partition("/")
        if not sep:
            return cls(DEFAULT_NAMESPACE, namespace)
        return cls(namespace, name)


IdentityLike = Union[str, ResourceIdentity]


@dataclass(frozen=True)
class UnitTemplate:
    """What every unit of a resource runs."""

    image: str
    tag: str = "latest"
    env: Dict[str, str] = field(default_factory=dict)
    command: Tuple[str, ...] = ()

    @property
    def reference(self) -> str:
        return f"{self.image}:{self.tag}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "tag": self.tag,
            "env": dict(self.env),
            "command": list(self.command),
        }

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "UnitTemplate":
        image = values.get("image")
        if image is None:
            raise ValueError("Unit template requires an 'image'")
        raw_env = values.get("env") or {}
        if not isinstance(raw_env, Mapping):
            raise ValueError("Unit template 'env' must be a mapping")
        return cls(
            image=str(image),
            tag=str(values.get("tag", "latest")),
            env={str(key): str(val) for key, val in raw_env.items()},
            command=tuple(str(part) for part in values.get("command") or ()),
        )


@dataclass(frozen=True)
class DesiredSpec:
    """
    User-declared target configuration for a resource.

    Specs are replaced wholesale; use :meth:`with_replicas` or
    :meth:`with_template` to derive a new one.
    """

    replica_count: int
    template: UnitTemplate
    max_surge: int = 1
    max_unavailable: int = 0

    def __post_init__(self) -> None:
        for attr in ("replica_count", "max_surge", "max_unavailable"):
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{attr} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{attr} must be non-negative, got {value}")
        if self.max_surge == 0 and self.max_unavailable == 0:
            raise ValueError("max_surge and max_unavailable cannot both be 0")
        if not isinstance(self.template, UnitTemplate):
            raise ValueError("template must be a UnitTemplate")

    def with_replicas(self, replica_count: int) -> "DesiredSpec":
        return replace(self, replica_count=replica_count)

    def with_template(self, template: UnitTemplate) -> "DesiredSpec":
        return replace(self, template=template)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "replica_count": self.replica_count,
            "template": self.template.to_dict(),
            "max_surge": self.max_surge,
            "max_unavailable": self.max_unavailable,
        }

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "DesiredSpec":
        try:
            return cls(
                replica_count=int(values.get("replica_count", 1)),
                template=UnitTemplate.from_dict(values.get("template") or {}),
                max_surge=int(values.get("max_surge", 1)),
                max_unavailable=int(values.get("max_unavailable", 0)),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid desired spec: {exc}") from exc
