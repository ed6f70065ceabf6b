"""Fix stream request parameters."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Priority(StrEnum):
    """Accuracy/power trade-off requested from the provider."""

    HIGH_ACCURACY = "high_accuracy"
    BALANCED = "balanced"
    LOW_POWER = "low_power"


class FixRequest(BaseModel):
    """Configuration for a continuous fix stream.

    Parameters
    ----------
    interval_ms : int
        Desired delivery cadence in milliseconds.
    min_update_interval_ms : int
        Deliveries closer together than this are dropped.
    max_update_delay_ms : int
        Maximum time the provider may batch fixes before delivering.
    priority : Priority
        Accuracy/power trade-off.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval_ms: int = Field(default=10_000, gt=0)
    min_update_interval_ms: int = Field(default=5_000, ge=0)
    max_update_delay_ms: int = Field(default=10_000, ge=0)
    priority: Priority = Priority.HIGH_ACCURACY

    @model_validator(mode="after")
    def _check_intervals(self) -> FixRequest:
        if self.min_update_interval_ms > self.interval_ms:
            raise ValueError("min_update_interval_ms must not exceed interval_ms")
        return self

    @classmethod
    def one_shot(cls) -> FixRequest:
        """Short-cadence profile used while waiting for a single fresh fix."""
        return cls(interval_ms=1_000, min_update_interval_ms=1_000, max_update_delay_ms=10_000)
