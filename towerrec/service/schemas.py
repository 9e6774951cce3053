"""Pydantic schemas for the recommendation API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PredictRequest(BaseModel):
    userId: int = Field(..., description="Raw userId from u.data")
    itemId: int = Field(..., description="Raw itemId from u.data / u.item")


class PredictResponse(BaseModel):
    userId: int
    itemId: int
    model: str
    rating: float


class RecommendRequest(BaseModel):
    """Request for top-k unrated items."""

    userId: int = Field(..., description="Raw userId from u.data")
    k: int = Field(10, ge=1, le=100, description="Number of recommendations to return (1..100).")
    candidateItemIds: Optional[list[int]] = Field(
        None, description="Restrict ranking to these items; default: every known item."
    )


class RecommendationItem(BaseModel):
    itemId: int
    score: float
    title: Optional[str] = None


class RecommendResponse(BaseModel):
    userId: int
    model: str
    k: int
    results: list[RecommendationItem]


class HealthResponse(BaseModel):
    status: str
    model: Optional[str] = None
