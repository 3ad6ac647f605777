from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

OPERATORS = ("eq", "ne", "contains", "in", "gt", "lt", "gte", "lte")
FLAG_TYPES = ("boolean", "multivariate", "number", "json")


@dataclass(frozen=True)
class TargetingCondition:
    attribute: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> "TargetingCondition":
        return cls(attribute=data["attribute"], operator=data["operator"], value=data.get("value"))

    def to_dict(self) -> dict:
        return {"attribute": self.attribute, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class TargetingRule:
    """Ordered override: every condition must match, then the rollout gate decides."""

    id: str
    conditions: List[TargetingCondition] = field(default_factory=list)
    rollout_percentage: float = 100
    value: Any = True
    enabled: bool = True
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "TargetingRule":
        return cls(
            id=data.get("id", ""),
            description=data.get("description") or "",
            conditions=[TargetingCondition.from_dict(c) for c in data.get("conditions") or []],
            rollout_percentage=data.get("rolloutPercentage", 100),
            value=data.get("value"),
            enabled=data.get("enabled", True),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "rolloutPercentage": self.rollout_percentage,
            "value": self.value,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class DefaultRule:
    rollout_percentage: float = 0
    value: Any = False

    @classmethod
    def from_dict(cls, data: dict) -> "DefaultRule":
        return cls(rollout_percentage=data.get("rolloutPercentage", 0), value=data.get("value"))

    def to_dict(self) -> dict:
        return {"rolloutPercentage": self.rollout_percentage, "value": self.value}


@dataclass(frozen=True)
class Targeting:
    enabled: bool
    rules: List[TargetingRule] = field(default_factory=list)
    default_rule: DefaultRule = field(default_factory=DefaultRule)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Targeting"]:
        if not data:
            return None
        return cls(
            enabled=bool(data.get("enabled", True)),
            rules=[TargetingRule.from_dict(r) for r in data.get("rules") or []],
            default_rule=DefaultRule.from_dict(data.get("defaultRule") or {}),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "rules": [r.to_dict() for r in self.rules],
            "defaultRule": self.default_rule.to_dict(),
        }


@dataclass(frozen=True)
class UserContext:
    id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "UserContext":
        data = data or {}
        return cls(id=data.get("id"), attributes=dict(data.get("attributes") or {}))


@dataclass(frozen=True)
class EvaluationResult:
    enabled: bool
    value: Any

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "value": self.value}


@dataclass
class Flag:
    project: str
    environment: str
    key: str
    description: Optional[str]
    type: str
    enabled: bool
    value: Any
    targeting: Optional[Targeting]
    version: int

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "environment": self.environment,
            "key": self.key,
            "description": self.description,
            "type": self.type,
            "enabled": self.enabled,
            "value": self.value,
            "targeting": self.targeting.to_dict() if self.targeting else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Flag":
        return cls(
            project=data["project"],
            environment=data["environment"],
            key=data["key"],
            description=data.get("description"),
            type=data.get("type", "boolean"),
            enabled=bool(data.get("enabled", False)),
            value=data.get("value"),
            targeting=Targeting.from_dict(data.get("targeting")),
            version=data.get("version", 1),
        )
