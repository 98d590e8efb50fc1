"""Component registry for discovery and management."""

from typing import Dict, List, Optional

from ranking.policy import ScoringPolicy
from ranking.protocols import ScoreComponent


class ComponentRegistry:
    """Registry for score components, keyed by name."""

    def __init__(self):
        self._components: Dict[str, ScoreComponent] = {}

    def register(self, component: ScoreComponent) -> None:
        """Register a component (replaces existing with same name)."""
        self._components[component.name] = component

    def unregister(self, name: str) -> None:
        """Remove a component by name. No-op if not found."""
        self._components.pop(name, None)

    def get(self, name: str) -> Optional[ScoreComponent]:
        return self._components.get(name)

    @property
    def names(self) -> List[str]:
        """Ordered list of registered component names."""
        return list(self._components.keys())

    @property
    def components(self) -> List[ScoreComponent]:
        """All registered components in insertion order."""
        return list(self._components.values())

    def weights(self, policy: ScoringPolicy) -> Dict[str, float]:
        """Policy weights for the registered components (unknown names weigh 0)."""
        policy_weights = policy.component_weights
        return {name: policy_weights.get(name, 0.0) for name in self._components}

    def __len__(self) -> int:
        return len(self._components)

    def __contains__(self, name: str) -> bool:
        return name in self._components
