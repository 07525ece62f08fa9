"""Pydantic models for request and response bodies."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Rating = Literal["happy", "normal", "sad"]


class EventIn(BaseModel):
    event_name: str = Field(..., min_length=1, max_length=64, description="Event kind, e.g. session_start")
    user_pseudo_id: Optional[str] = Field(None, max_length=255, description="Per-device pseudonymous id")
    post_id: Optional[str] = Field(None, max_length=36, description="Post the event refers to, if any")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form event attributes")


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_name: str
    user_pseudo_id: Optional[str]
    post_id: Optional[str]
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        description="Event attributes as stored",
    )
    created_at: datetime

    @field_validator("metadata", mode="before")
    @classmethod
    def decode_metadata(cls, value: Any) -> Any:
        # stored rows hold JSON text; anything unreadable is reported as empty
        if value is None:
            return {}
        if isinstance(value, (str, bytes)):
            try:
                value = json.loads(value)
            except ValueError:
                return {}
            return value if isinstance(value, dict) else {}
        return value


class PostIn(BaseModel):
    content: str = Field(..., max_length=2000)
    media_url: Optional[str] = Field(None, max_length=2048)
    media_type: Optional[Literal["image", "video"]] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must not be blank")
        return value


class PostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    content: str
    media_url: Optional[str]
    media_type: Optional[str]
    likes: int
    created_at: datetime


class FeedbackIn(BaseModel):
    rating: Rating
    post_id: Optional[str] = Field(None, max_length=36)


class FeedbackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    post_id: Optional[str]
    rating: Rating
    created_at: datetime


class MetricsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unique_visits: int
    activation_rate: float
    activation_goal_met: bool
    total_qr_scans: int
    dau: int
    total_posts: int
    total_likes: int
    total_shares: int
    engagement_rate: float
    avg_session_length_min: float
    churn_rate: float
    day1_retention: float
    viral_coefficient: float
    nps_score: int
    nps_threshold_met: bool
    happy_count: int
    normal_count: int
    sad_count: int
    total_feedback: int


class DashboardOut(BaseModel):
    total_posts: int
    total_likes: int
    total_shares: int
    total_feedback: int
    happy_count: int
    normal_count: int
    sad_count: int
    happy_percent: int
    sad_percent: int
