"""End-to-end scenarios."""

from .driver import STEPS, PubSubScenario, ScenarioReport

__all__ = ["STEPS", "PubSubScenario", "ScenarioReport"]
