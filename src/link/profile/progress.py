"""
Signup Progress State Machine.

Tracks progress through the signup flow. Stages are totally ordered and
transitions only move forward; the machine never infers a stage from
document content, callers name the milestone they just completed.

The stage tag is persisted locally and remotely (setupProgress) so the
flow resumes on the right screen after a restart.
"""

import logging
from enum import Enum

from .errors import InvalidStageTransition

logger = logging.getLogger(__name__)


class SignupStage(str, Enum):
    """Signup flow milestones, in order."""
    INITIAL = "initial"
    NAME_ENTERED = "nameEntered"
    EMAIL_VERIFIED = "emailVerified"
    DOB_VERIFIED = "dobVerified"
    GENDER_COMPLETE = "genderComplete"
    SEXUALITY_COMPLETE = "sexualityComplete"
    SEXUALITY_PREFERENCE_COMPLETE = "sexualityPreferenceComplete"
    HEIGHT_COMPLETE = "heightComplete"
    DATING_INTENTION_COMPLETE = "datingIntentionComplete"
    CHILDREN_COMPLETE = "childrenComplete"
    FAMILY_PLANS_COMPLETE = "familyPlansComplete"
    EDUCATION_COMPLETE = "educationComplete"
    RELIGION_COMPLETE = "religionComplete"
    ETHNICITY_COMPLETE = "ethnicityComplete"
    DRINKING_COMPLETE = "drinkingComplete"
    SMOKING_COMPLETE = "smokingComplete"
    POLITICS_COMPLETE = "politicsComplete"
    DRUGS_COMPLETE = "drugsComplete"
    LOCATION_COMPLETE = "locationComplete"
    PHOTOS_COMPLETE = "photosComplete"
    COMPLETE = "complete"


STAGE_ORDER: tuple[SignupStage, ...] = tuple(SignupStage)
_STEP_INDEX = {stage: index for index, stage in enumerate(STAGE_ORDER)}

# One UI step per stage
TOTAL_STEPS = len(STAGE_ORDER)


def stage_to_step(stage: SignupStage) -> int:
    """UI step index for a stage. Total and order-preserving."""
    return _STEP_INDEX[stage]


def parse_stage(tag: str | None) -> SignupStage:
    """
    Parse a persisted stage tag.

    Unknown or corrupt tags fall back to INITIAL so the UI always has a
    screen to render.
    """
    if tag is None:
        return SignupStage.INITIAL
    try:
        return SignupStage(tag)
    except ValueError:
        logger.warning(f"Unknown signup stage tag {tag!r}, falling back to initial")
        return SignupStage.INITIAL


def next_stage(stage: SignupStage) -> SignupStage | None:
    """The milestone after `stage`, or None once complete."""
    index = _STEP_INDEX[stage] + 1
    return STAGE_ORDER[index] if index < TOTAL_STEPS else None


class ProgressStateMachine:
    """
    Forward-only signup stage tracker with rollback to the last
    persisted stage.

    advance() is speculative: the owner persists the new stage and then
    calls mark_persisted(), or rollback() if persistence failed.
    """

    def __init__(self, stage: SignupStage = SignupStage.INITIAL):
        self._stage = stage
        self._persisted = stage

    @property
    def stage(self) -> SignupStage:
        return self._stage

    @property
    def persisted_stage(self) -> SignupStage:
        return self._persisted

    @property
    def step(self) -> int:
        return stage_to_step(self._stage)

    @property
    def is_complete(self) -> bool:
        return self._stage == SignupStage.COMPLETE

    @property
    def has_unpersisted_change(self) -> bool:
        return self._stage != self._persisted

    def can_advance(self, target: SignupStage) -> bool:
        return stage_to_step(target) > self.step

    def advance(self, target: SignupStage) -> bool:
        """
        Move forward to `target`.

        Returns False when `target` is the current stage (no-op).
        Raises InvalidStageTransition if `target` is behind the current stage.
        """
        if target == self._stage:
            return False
        if not self.can_advance(target):
            raise InvalidStageTransition(self._stage.value, target.value)
        logger.info(f"Signup stage {self._stage.value} -> {target.value}")
        self._stage = target
        return True

    def mark_persisted(self) -> None:
        self._persisted = self._stage

    def rollback(self) -> SignupStage:
        """Restore the last persisted stage."""
        if self.has_unpersisted_change:
            logger.warning(
                f"Rolling signup stage back from {self._stage.value} to {self._persisted.value}"
            )
        self._stage = self._persisted
        return self._stage

    def restore(self, stage: SignupStage) -> None:
        """Adopt a stage read back from storage (e.g. on cold start)."""
        self._stage = stage
        self._persisted = stage

    def reset(self) -> None:
        """Terminal reset to INITIAL (logout, no authenticated user)."""
        self.restore(SignupStage.INITIAL)

    def __repr__(self) -> str:
        return f"ProgressStateMachine(stage={self._stage.value}, step={self.step})"
