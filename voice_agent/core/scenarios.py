"""Scenario definitions: the personas an agent can play."""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Scenario:
    """A named persona with a fixed system instruction."""

    id: str
    display_name: str
    system_instruction: str


CALLING_AGENT = Scenario(
    id="calling_agent",
    display_name="Calling Agent (Appointment Scheduling)",
    system_instruction="""You are a professional appointment scheduling assistant.
Your job is to:
- Collect user's name
- Collect preferred date/time
- Confirm details
- Ask follow-up questions if info missing
- Maintain structured flow
Be concise and natural. Once finished, summarize the appointment and say goodbye.""",
)

CUSTOMER_SUPPORT = Scenario(
    id="customer_support",
    display_name="Customer Support (Empathetic Agent)",
    system_instruction="""You are a calm and empathetic customer support agent.
Steps:
1. Ask for issue
2. Ask for product/order ID
3. Provide solution or escalation (e.g., 'I will escalate this to our warehouse team')
4. Offer further help
Be polite, structured, and empathetic. Keep responses concise.""",
)

TECHNICAL_ASSISTANT = Scenario(
    id="technical_assistant",
    display_name="Technical Assistant (Step-by-Step)",
    system_instruction="""You are a step-by-step technical troubleshooting assistant.
Guide the user slowly.
Ask one question at a time.
Wait for confirmation before moving to next step.
Identify the problem, provide a single suggestion, and ask if it worked.""",
)


class ScenarioRegistry:
    """Static mapping from scenario id to scenario.

    Lookups never fail: an unknown id resolves to the default scenario.
    """

    def __init__(self):
        self._scenarios: Dict[str, Scenario] = {}
        self._default_id: Optional[str] = None

    def register(self, scenario: Scenario, default: bool = False) -> None:
        """Register a scenario. The first registered scenario is the default
        unless another one is registered with ``default=True``."""
        self._scenarios[scenario.id] = scenario
        if default or self._default_id is None:
            self._default_id = scenario.id

    @property
    def default(self) -> Scenario:
        if self._default_id is None:
            raise LookupError("No scenarios registered")
        return self._scenarios[self._default_id]

    def get(self, scenario_id: Optional[str]) -> Scenario:
        return self._scenarios.get(scenario_id, self.default) if scenario_id else self.default

    def list(self) -> List[Dict[str, str]]:
        """Scenario summaries for presentation, in registration order."""
        return [{"id": s.id, "name": s.display_name} for s in self._scenarios.values()]

    def ids(self) -> List[str]:
        return list(self._scenarios)

    def __contains__(self, scenario_id: object) -> bool:
        return scenario_id in self._scenarios

    def __len__(self) -> int:
        return len(self._scenarios)


def create_default_registry() -> ScenarioRegistry:
    """Registry holding the built-in scenarios, calling agent first."""
    registry = ScenarioRegistry()
    registry.register(CALLING_AGENT, default=True)
    registry.register(CUSTOMER_SUPPORT)
    registry.register(TECHNICAL_ASSISTANT)
    return registry
