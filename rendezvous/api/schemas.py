"""
Pydantic schemas for the HTTP surface.
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, validator


class HealthModel(BaseModel):
    status: str = "ok"
    clients: int = 0
    waiting: int = 0
    active_pairs: int = Field(default=0, alias="activePairs")
    model_config = ConfigDict(populate_by_name=True)

    @validator("clients", "waiting", "active_pairs", pre=True)
    def _non_negative(cls, value: int) -> int:
        return max(0, int(value))


class LivenessModel(BaseModel):
    status: str = "ok"
    profile: str = "default"


class PairModel(BaseModel):
    participants: List[str]


class SessionsModel(BaseModel):
    states: Dict[str, str] = Field(default_factory=dict)
    queue: List[str] = Field(default_factory=list)
    pairs: List[PairModel] = Field(default_factory=list)
