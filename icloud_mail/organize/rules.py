"""Organization rules: which messages to move, and where."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from icloud_mail.mail.types import NormalizedMessage

_CONDITION_KEYS = ("fromContains", "subjectContains")


class InvalidRuleError(ValueError):
    """Raised when a rule object from a caller is missing required fields."""


@dataclass(frozen=True)
class RuleCondition:
    from_contains: str | None = None
    subject_contains: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.from_contains and not self.subject_contains


@dataclass(frozen=True)
class RuleAction:
    move_to_mailbox: str


@dataclass(frozen=True)
class OrganizationRule:
    """A named condition → destination pair.

    Present condition fields are OR'ed: a message matches when its sender
    contains ``fromContains`` or its subject contains ``subjectContains``,
    case-insensitively.  A rule with no condition fields matches nothing.
    """

    name: str
    condition: RuleCondition
    action: RuleAction

    @classmethod
    def from_dict(cls, data: Any) -> OrganizationRule:
        """Build a rule from its JSON shape (camelCase keys).

        Raises:
            InvalidRuleError: if ``name`` or ``action.moveToMailbox`` is missing,
                or a condition field is not a string.
        """
        if not isinstance(data, dict):
            raise InvalidRuleError(f"Rule must be an object, got {type(data).__name__}")

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidRuleError("Rule is missing a name")

        condition = data.get("condition") or {}
        action = data.get("action") or {}
        if not isinstance(condition, dict) or not isinstance(action, dict):
            raise InvalidRuleError(f"Rule '{name}' has a malformed condition or action")

        destination = action.get("moveToMailbox")
        if not isinstance(destination, str) or not destination.strip():
            raise InvalidRuleError(f"Rule '{name}' is missing action.moveToMailbox")

        for key in _CONDITION_KEYS:
            value = condition.get(key)
            if value is not None and not isinstance(value, str):
                raise InvalidRuleError(
                    f"Rule '{name}' condition.{key} must be a string, got {type(value).__name__}"
                )

        return cls(
            name=name,
            condition=RuleCondition(
                from_contains=condition.get("fromContains") or None,
                subject_contains=condition.get("subjectContains") or None,
            ),
            action=RuleAction(move_to_mailbox=destination),
        )

    def matches(self, message: NormalizedMessage) -> bool:
        cond = self.condition
        if cond.from_contains and cond.from_contains.lower() in (message.sender or "").lower():
            return True
        if cond.subject_contains and cond.subject_contains.lower() in (message.subject or "").lower():
            return True
        return False
