"""Property weight table.

A property's weight decides two things: whether it is shown when internal
properties are not requested, and whether re-indexing replaces its old rows
or appends new ones next to them.
"""
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional

UpdateBehavior = Literal["replace", "append"]

# Weights at or above this are hidden unless internal properties are requested
INTERNAL_THRESHOLD = 3


@dataclass(frozen=True)
class PropertyWeightRule:
    """How properties of one weight are shown and re-indexed."""
    label: str
    visible_by_default: bool
    update_behavior: UpdateBehavior = "replace"


DEFAULT_WEIGHT_RULES: Dict[float, PropertyWeightRule] = {
    2: PropertyWeightRule("Public", visible_by_default=True),
    3: PropertyWeightRule("Internal", visible_by_default=False),
    4: PropertyWeightRule("System Log", visible_by_default=False, update_behavior="append"),
}

_PUBLIC_FALLBACK = PropertyWeightRule("Public", visible_by_default=True)
_INTERNAL_FALLBACK = PropertyWeightRule("Internal", visible_by_default=False)


class PropertyWeightTable:
    """Lookup of weight -> rule with a threshold fallback.

    Weights without an explicit row are public with replace semantics below
    INTERNAL_THRESHOLD and internal with replace semantics at or above it.
    """

    def __init__(self, rules: Optional[Mapping[float, PropertyWeightRule]] = None):
        self._rules: Dict[float, PropertyWeightRule] = dict(
            DEFAULT_WEIGHT_RULES if rules is None else rules
        )

    def rule_for(self, weight: float) -> PropertyWeightRule:
        rule = self._rules.get(weight)
        if rule is not None:
            return rule
        return _PUBLIC_FALLBACK if weight < INTERNAL_THRESHOLD else _INTERNAL_FALLBACK

    def is_internal(self, weight: float) -> bool:
        return not self.rule_for(weight).visible_by_default

    def is_visible(self, weight: float, include_internal: bool = False) -> bool:
        """Return True if a property of this weight should be shown."""
        return include_internal or self.rule_for(weight).visible_by_default

    def is_append(self, weight: float) -> bool:
        return self.rule_for(weight).update_behavior == "append"


DEFAULT_WEIGHT_TABLE = PropertyWeightTable()
