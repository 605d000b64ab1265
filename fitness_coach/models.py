"""Pydantic models for estimates, validation results and persisted logs.

Model replies use camelCase keys; Python code uses the snake_case names.
Both are accepted on input (populate_by_name).
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, allow_inf_nan=False)


class FoodItem(_Frozen):
    name: str = Field(..., min_length=1)
    quantity: str = Field("", description="Human-readable portion, e.g. '1 cup'")
    calories: float = Field(..., ge=0)
    protein_g: float = Field(0.0, ge=0)
    carbs_g: float = Field(0.0, ge=0)
    fat_g: float = Field(0.0, ge=0)
    fiber_g: float = Field(0.0, ge=0)


class NutritionEstimate(_Frozen):
    """First-pass estimate returned by the vision model."""

    food_items: List[FoodItem] = Field(..., alias="foodItems")
    total_calories: float = Field(..., ge=0, alias="totalCalories")
    total_protein: float = Field(..., ge=0, alias="totalProtein")
    total_carbs: float = Field(..., ge=0, alias="totalCarbs")
    total_fat: float = Field(..., ge=0, alias="totalFat")
    total_fiber: float = Field(0.0, ge=0, alias="totalFiber")
    confidence_score: float = Field(..., ge=0, le=1, alias="confidenceScore")
    analysis_notes: str = Field("", alias="analysisNotes")

    def item_sums(self) -> Dict[str, float]:
        """Per-field sums over food_items, keyed like the totals."""
        return {
            "total_calories": sum(i.calories for i in self.food_items),
            "total_protein": sum(i.protein_g for i in self.food_items),
            "total_carbs": sum(i.carbs_g for i in self.food_items),
            "total_fat": sum(i.fat_g for i in self.food_items),
            "total_fiber": sum(i.fiber_g for i in self.food_items),
        }

    def totals_mismatch(self, rel_tol: float = 0.01, abs_tol: float = 1.0) -> Dict[str, Dict[str, float]]:
        """Totals that differ from the item sums by more than the tolerance."""
        out: Dict[str, Dict[str, float]] = {}
        for key, summed in self.item_sums().items():
            reported = getattr(self, key)
            if abs(reported - summed) > max(abs_tol, rel_tol * max(abs(reported), abs(summed))):
                out[key] = {"reported": reported, "items_sum": round(summed, 2)}
        return out


class ValidationResult(_Frozen):
    """Second-pass verdict. Only the calorie total may be superseded."""

    is_reasonable: bool = Field(..., alias="isReasonable")
    adjusted_calories: float = Field(..., ge=0, alias="adjustedCalories")
    reasoning: str = ""


class NutritionLogRecord(_Frozen):
    id: str
    user_id: str = Field(..., alias="userId")
    food_items: List[FoodItem] = Field(default_factory=list, alias="foodItems")
    total_calories: float = Field(0.0, alias="totalCalories")
    total_protein: float = Field(0.0, alias="totalProtein")
    total_carbs: float = Field(0.0, alias="totalCarbs")
    total_fat: float = Field(0.0, alias="totalFat")
    total_fiber: float = Field(0.0, alias="totalFiber")
    confidence_score: float = Field(..., ge=0, le=1, alias="confidenceScore")
    image_reference: Optional[str] = Field(None, alias="imageReference")
    analysis_notes: str = Field("", alias="analysisNotes")
    created_at: dt.datetime = Field(..., alias="createdAt")


class NewNutritionLog(_Frozen):
    """Everything the store needs to create a record; id and created_at are assigned on write."""

    user_id: str
    food_items: List[FoodItem]
    total_calories: float
    total_protein: float
    total_carbs: float
    total_fat: float
    total_fiber: float
    confidence_score: float
    image_reference: Optional[str] = None
    analysis_notes: str = ""

    @classmethod
    def from_estimate(
        cls,
        user_id: str,
        estimate: NutritionEstimate,
        total_calories: float,
        image_reference: Optional[str] = None,
    ) -> "NewNutritionLog":
        return cls(
            user_id=user_id,
            food_items=list(estimate.food_items),
            total_calories=total_calories,
            total_protein=estimate.total_protein,
            total_carbs=estimate.total_carbs,
            total_fat=estimate.total_fat,
            total_fiber=estimate.total_fiber,
            confidence_score=estimate.confidence_score,
            image_reference=image_reference,
            analysis_notes=estimate.analysis_notes,
        )


class DailySummary(_Frozen):
    user_id: str = Field(..., alias="userId")
    date: dt.date
    total_calories: float = Field(0.0, alias="totalCalories")
    total_protein: float = Field(0.0, alias="totalProtein")
    total_carbs: float = Field(0.0, alias="totalCarbs")
    total_fat: float = Field(0.0, alias="totalFat")
    total_fiber: float = Field(0.0, alias="totalFiber")
    entry_count: int = Field(0, ge=0, alias="entryCount")


class PhotoLogResult(_Frozen):
    record: NutritionLogRecord
    requires_user_confirmation: bool = Field(..., alias="requiresUserConfirmation")
    validation: Optional[ValidationResult] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
