from pydantic import BaseModel, ConfigDict, Field, confloat, conint
from typing import List, Literal, Optional, Any, Dict, Union

Operator = Literal["eq", "ne", "contains", "in", "gt", "lt", "gte", "lte"]
FlagType = Literal["boolean", "multivariate", "number", "json"]
Percentage = Union[conint(ge=0, le=100), confloat(ge=0, le=100)]


class ConditionModel(BaseModel):
    attribute: str = Field(..., description="user attribute name, e.g., plan, country")
    operator: Operator
    value: Any = None


class RuleModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    description: str = ""
    conditions: List[ConditionModel] = []
    rollout_percentage: Percentage = Field(100, alias="rolloutPercentage")
    value: Any = True
    enabled: bool = True


class DefaultRuleModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rollout_percentage: Percentage = Field(0, alias="rolloutPercentage")
    value: Any = False


class TargetingModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    rules: List[RuleModel] = []
    default_rule: DefaultRuleModel = Field(default_factory=DefaultRuleModel, alias="defaultRule")


class FlagCreate(BaseModel):
    key: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: FlagType = "boolean"
    enabled: bool = False
    value: Any = False
    targeting: Optional[TargetingModel] = None


class FlagUpdate(BaseModel):
    description: Optional[str] = None
    type: Optional[FlagType] = None
    enabled: Optional[bool] = None
    value: Any = None
    targeting: Optional[TargetingModel] = None


class FlagOut(BaseModel):
    project: str
    environment: str
    key: str
    description: Optional[str] = None
    type: str
    enabled: bool
    value: Any = None
    targeting: Optional[TargetingModel] = None
    version: int


class UserContextModel(BaseModel):
    id: Optional[str] = None
    attributes: Dict[str, Any] = {}


class EvaluateRequest(BaseModel):
    project: str
    environment: str
    user: UserContextModel = Field(default_factory=UserContextModel)


class FlagValue(BaseModel):
    enabled: bool
    value: Any = None
    type: str


class FlagsResponse(BaseModel):
    flags: Dict[str, FlagValue]
    user: UserContextModel


class EvaluationResult(BaseModel):
    key: str
    enabled: bool
    value: Any = None
    type: str
    version: int
