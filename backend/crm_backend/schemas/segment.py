"""Pydantic models for segment rules and segment endpoints."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RuleField(str, Enum):
    """Customer attributes a rule may filter on."""

    TOTAL_SPENT = "total_spent"
    ORDER_COUNT = "order_count"
    LAST_PURCHASE = "last_purchase"
    TAGS = "tags"
    CITY = "city"
    IS_ACTIVE = "is_active"
    STATE = "state"
    COUNTRY = "country"
    GENDER = "gender"
    AGE = "age"
    AVERAGE_ORDER_VALUE = "average_order_value"


class RuleOperator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NE = "!="
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class ValueType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    DATE = "date"
    BOOLEAN = "boolean"


class Combinator(str, Enum):
    AND = "AND"
    OR = "OR"


class Rule(BaseModel):
    field: RuleField
    operator: RuleOperator
    value: Any = None
    value_type: Optional[ValueType] = None


class RuleSet(BaseModel):
    """Flat boolean expression: every rule joined by one combinator."""

    model_config = ConfigDict(populate_by_name=True)

    # Older clients send the combinator as ``condition``.
    combinator: Combinator = Field(
        Combinator.AND, validation_alias=AliasChoices("combinator", "condition")
    )
    rules: List[Rule] = Field(default_factory=list)

    @field_validator("combinator", mode="before")
    @classmethod
    def normalize_combinator(cls, v: Any) -> Any:
        if v is None:
            return Combinator.AND
        # anything that is not "and" joins the rules with OR
        if isinstance(v, str) and v.strip().upper() == Combinator.AND.value:
            return Combinator.AND
        return Combinator.OR


class SegmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    rules: RuleSet


class SegmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    rules: Optional[RuleSet] = None


class SegmentEstimateRequest(BaseModel):
    rules: RuleSet


class SegmentEstimateOut(BaseModel):
    count: int


class SegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    rules: RuleSet
    estimated_count: int
    created_by: int
    is_dynamic: bool
    created_at: datetime
    updated_at: datetime
