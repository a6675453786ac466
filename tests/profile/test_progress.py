"""
Tests for the signup progress state machine.
"""

import pytest

from link.profile.errors import InvalidStageTransition
from link.profile.progress import (
    STAGE_ORDER,
    TOTAL_STEPS,
    ProgressStateMachine,
    SignupStage,
    next_stage,
    parse_stage,
    stage_to_step,
)


class TestStageMapping:
    def test_first_and_last(self):
        assert stage_to_step(SignupStage.INITIAL) == 0
        assert stage_to_step(SignupStage.COMPLETE) == TOTAL_STEPS - 1 == 20

    def test_mapping_is_total_and_strictly_increasing(self):
        steps = [stage_to_step(stage) for stage in STAGE_ORDER]
        assert steps == list(range(len(SignupStage)))

    def test_location_sits_between_drugs_and_photos(self):
        assert stage_to_step(SignupStage.DRUGS_COMPLETE) == 17
        assert stage_to_step(SignupStage.LOCATION_COMPLETE) == 18
        assert stage_to_step(SignupStage.PHOTOS_COMPLETE) == 19

    def test_next_stage(self):
        assert next_stage(SignupStage.INITIAL) == SignupStage.NAME_ENTERED
        assert next_stage(SignupStage.PHOTOS_COMPLETE) == SignupStage.COMPLETE
        assert next_stage(SignupStage.COMPLETE) is None


class TestParseStage:
    def test_known_tag(self):
        assert parse_stage("genderComplete") == SignupStage.GENDER_COMPLETE

    def test_missing_tag(self):
        assert parse_stage(None) == SignupStage.INITIAL

    def test_unknown_tag_falls_back(self, caplog):
        assert parse_stage("someFutureStage") == SignupStage.INITIAL
        assert "someFutureStage" in caplog.text


class TestProgressStateMachine:
    def test_starts_initial(self):
        machine = ProgressStateMachine()
        assert machine.stage == SignupStage.INITIAL
        assert machine.step == 0
        assert not machine.is_complete

    def test_advance_forward(self):
        machine = ProgressStateMachine()
        assert machine.advance(SignupStage.NAME_ENTERED) is True
        assert machine.stage == SignupStage.NAME_ENTERED
        assert machine.has_unpersisted_change

    def test_advance_can_skip_stages(self):
        machine = ProgressStateMachine(SignupStage.NAME_ENTERED)
        machine.advance(SignupStage.HEIGHT_COMPLETE)
        assert machine.step == 7

    def test_advance_to_same_stage_is_noop(self):
        machine = ProgressStateMachine(SignupStage.GENDER_COMPLETE)
        assert machine.advance(SignupStage.GENDER_COMPLETE) is False
        assert not machine.has_unpersisted_change

    def test_backward_transition_rejected(self):
        machine = ProgressStateMachine(SignupStage.HEIGHT_COMPLETE)
        with pytest.raises(InvalidStageTransition) as exc_info:
            machine.advance(SignupStage.NAME_ENTERED)
        assert exc_info.value.current == "heightComplete"
        assert exc_info.value.requested == "nameEntered"
        assert machine.stage == SignupStage.HEIGHT_COMPLETE

    def test_rollback_restores_persisted(self):
        machine = ProgressStateMachine(SignupStage.GENDER_COMPLETE)
        machine.advance(SignupStage.SEXUALITY_COMPLETE)
        assert machine.rollback() == SignupStage.GENDER_COMPLETE
        assert machine.stage == SignupStage.GENDER_COMPLETE
        assert not machine.has_unpersisted_change

    def test_mark_persisted(self):
        machine = ProgressStateMachine()
        machine.advance(SignupStage.NAME_ENTERED)
        machine.mark_persisted()
        assert machine.persisted_stage == SignupStage.NAME_ENTERED
        assert machine.rollback() == SignupStage.NAME_ENTERED

    def test_restore_sets_both(self):
        machine = ProgressStateMachine()
        machine.restore(SignupStage.PHOTOS_COMPLETE)
        assert machine.stage == machine.persisted_stage == SignupStage.PHOTOS_COMPLETE

    def test_reset_returns_to_initial(self):
        machine = ProgressStateMachine(SignupStage.COMPLETE)
        assert machine.is_complete
        machine.reset()
        assert machine.stage == SignupStage.INITIAL
        assert machine.persisted_stage == SignupStage.INITIAL

    def test_walk_every_stage(self):
        machine = ProgressStateMachine()
        for stage in STAGE_ORDER[1:]:
            previous = machine.step
            machine.advance(stage)
            machine.mark_persisted()
            assert machine.step == previous + 1
        assert machine.is_complete
