from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class RoutingVariant:
    name: str
    defaults: Dict[str, Any] = field(default_factory=dict)

    def params(self, overrides: Dict[str, Any] | None = None) -> Dict[str, Any]:
        out = dict(self.defaults)
        unknown = sorted(set(overrides or {}) - set(out))
        if unknown:
            raise KeyError(f"Unknown {self.name} parameters: {unknown}")
        out.update(overrides or {})
        return out


_REGISTRY: Dict[str, RoutingVariant] = {
    "aodv": RoutingVariant(
        "aodv",
        defaults={"hello_interval": 1.0, "active_route_timeout": 3.0, "rreq_retries": 2},
    ),
    "dsr": RoutingVariant("dsr", defaults={"max_cache_len": 64}),
    "olsr": RoutingVariant(
        "olsr",
        defaults={"hello_interval": 2.0, "tc_interval": 5.0, "hello_validity": 8.0},
    ),
    "dsdv": RoutingVariant(
        "dsdv", defaults={"periodic_update_interval": 15.0, "settling_time": 6.0}
    ),
}


def register_routing(variant: RoutingVariant) -> None:
    _REGISTRY[variant.name] = variant


def load_routing(name: str) -> RoutingVariant:
    key = name.lower()
    if key not in _REGISTRY:
        raise KeyError(f"Unknown routing variant: {name}. Available: {sorted(_REGISTRY.keys())}")
    return _REGISTRY[key]


def available_routing() -> list[str]:
    return sorted(_REGISTRY.keys())
