from __future__ import annotations

import datetime as dt
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from app.rules import PenaltyKind, ResultStatus


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    logo_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Team name is required")
        return value.strip()


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    logo_url: Optional[str] = None


class DriverCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    number: int = Field(ge=0)
    team_id: int
    photo_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Driver name is required")
        return value.strip()


class DriverUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    number: Optional[int] = Field(default=None, ge=0)
    team_id: Optional[int] = None
    photo_url: Optional[str] = None


class RaceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    date: dt.date

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Race name is required")
        return value.strip()


class RaceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    date: Optional[dt.date] = None


class RaceResultEntry(BaseModel):
    position: int = Field(ge=1)
    driver_id: int
    status: ResultStatus = ResultStatus.COMPLETED


class RaceResultsReplace(BaseModel):
    results: list[RaceResultEntry]


class PointTableEntry(BaseModel):
    position: int = Field(ge=1)
    points: int = Field(ge=0)


class PointTableUpsert(BaseModel):
    entries: list[PointTableEntry]


class DriverTargetIn(BaseModel):
    type: Literal["driver"] = "driver"
    driver_id: int


class TeamTargetIn(BaseModel):
    type: Literal["team"] = "team"
    team_id: int


PenaltyTargetIn = Annotated[Union[DriverTargetIn, TeamTargetIn], Field(discriminator="type")]


class PenaltyCreate(BaseModel):
    target: PenaltyTargetIn
    kind: PenaltyKind = PenaltyKind.POINTS_LOSS
    points_deducted: int = Field(default=0, ge=0)
    description: str = Field(min_length=1)
    date: Optional[dt.date] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Penalty description is required")
        return value.strip()
