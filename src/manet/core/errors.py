from __future__ import annotations


class ScenarioError(Exception):
    """Base class for every failure raised by the scenario core."""


class ConfigError(ScenarioError, ValueError):
    """Malformed cluster, flow or global configuration. Always fatal."""


class SetupOrderError(ScenarioError, RuntimeError):
    """A build step was invoked before the step it depends on."""


class EngineError(ScenarioError, RuntimeError):
    """Failure surfaced by the simulation engine while running."""
