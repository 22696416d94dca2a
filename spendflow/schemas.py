"""Input contracts checked once at the operation boundary."""

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from spendflow.aggregation import LAYOUTS

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
ALL_ACCOUNTS = "all"


class DashboardQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    account: str = ALL_ACCOUNTS
    exclude: list[str] = Field(default_factory=list)
    layout: str = "bipartite"
    limit: int = Field(default=500, ge=1, le=500)

    @field_validator("account")
    @classmethod
    def _blank_account_means_all(cls, value: str) -> str:
        return value.strip() or ALL_ACCOUNTS

    @field_validator("layout")
    @classmethod
    def _known_layout(cls, value: str) -> str:
        if value not in LAYOUTS:
            raise ValueError(f"layout must be one of {', '.join(LAYOUTS)}")
        return value


class OverrideIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transaction_id: str = Field(..., min_length=1)
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("category")
    @classmethod
    def _blank_clears(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class RuleIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    match_type: Literal["contains", "regex"] = "contains"
    pattern: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    apply_now: bool = True

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("category must not be blank")
        return value

    @model_validator(mode="after")
    def _regex_compiles(self) -> "RuleIn":
        if self.match_type == "regex":
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid regular expression: {e}") from e
        return self


class SyncIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    item_id: Optional[int] = Field(default=None, gt=0)


class ExchangeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    public_token: str = Field(..., min_length=1)


class SeedIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    item_id: Optional[int] = Field(default=None, gt=0)
    count: int = Field(default=30, ge=1, le=100)
