"""Routing variants the network stack can be installed with."""

from manet.routing.registry import RoutingVariant, available_routing, load_routing, register_routing

__all__ = ["RoutingVariant", "available_routing", "load_routing", "register_routing"]
