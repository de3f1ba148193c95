"""
Tests for the memory models: the multi-factor decay model, encoding
variability and word mastery tracking.
"""

import datetime

import pytest

from amas.common.config import MemoryModelConfig
from amas.memory import evm, mastery, mdm
from amas.memory.evm import EvmState
from amas.memory.mastery import WordMemoryState
from amas.memory.mdm import MdmState
from amas.types import MasteryLevel

DAY = 86400.0


def reviewed_state(now, strength=0.5):
    return MdmState(memory_strength=strength, last_review_at=now, review_count=1)


class TestDecayModel:
    """Test strength updates, recall and interval computation."""

    def test_update_strength_from_empty_state(self, now):
        state = MdmState()
        result = mdm.update_strength(state, quality=1.0, alpha=0.3, now=now)

        assert result is state
        assert state.short_term_strength == pytest.approx(0.5)
        assert state.medium_term_strength == pytest.approx(0.2)
        assert state.long_term_strength == pytest.approx(0.05)
        assert state.consolidation == pytest.approx(0.03)
        # composite 0.185 boosted by consolidation 0.03 * 0.2
        assert state.memory_strength == pytest.approx(0.3 * 0.185 * 1.006)
        assert state.review_count == 1
        assert state.last_review_at == now

    def test_successful_reviews_never_lower_strength(self, now):
        state = MdmState()
        previous = 0.0
        for i in range(30):
            mdm.update_strength(state, quality=0.9, alpha=0.3, now=now + datetime.timedelta(hours=i))
            assert state.memory_strength >= previous
            assert 0.0 <= state.memory_strength <= 1.0
            previous = state.memory_strength

    def test_update_clamps_out_of_range_inputs(self, now):
        state = MdmState()
        mdm.update_strength(state, quality=7.0, alpha=-3.0, now=now)
        assert state.memory_strength == 0.0
        assert state.short_term_strength == pytest.approx(0.5)

        mdm.update_strength(state, quality=float("nan"), alpha=2.0, now=now)
        assert 0.0 <= state.memory_strength <= 1.0

    def test_recall_of_never_reviewed_state_is_zero(self, now):
        assert mdm.recall_probability(MdmState(), now) == 0.0

    def test_recall_right_after_review_is_one(self, now):
        assert mdm.recall_probability(reviewed_state(now), now) == pytest.approx(1.0)

    def test_recall_before_review_time_is_floored(self, now):
        earlier = now - datetime.timedelta(days=3)
        assert mdm.recall_probability(reviewed_state(now), earlier) == pytest.approx(1.0)

    @pytest.mark.parametrize("strength", [0.0, 0.05, 0.3, 0.7, 1.0])
    def test_recall_is_non_increasing_in_elapsed_time(self, now, strength):
        state = reviewed_state(now, strength)
        deltas = [0, 1, 60, 3600, DAY / 2, DAY, 3 * DAY, 30 * DAY, 365 * DAY, 10 * 365 * DAY]
        values = [mdm.recall_probability(state, now + datetime.timedelta(seconds=d)) for d in deltas]

        for earlier, later in zip(values, values[1:]):
            assert later <= earlier
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_stronger_memory_decays_slower(self, now):
        later = now + datetime.timedelta(days=2)
        weak = mdm.recall_probability(reviewed_state(now, 0.1), later)
        strong = mdm.recall_probability(reviewed_state(now, 0.9), later)
        assert strong > weak

    def test_interval_hits_target_retention(self, now):
        state = reviewed_state(now, 0.6)
        interval = mdm.compute_interval(state, 0.85, scale=1.0)
        recall = mdm.recall_probability(state, now + datetime.timedelta(seconds=interval))
        assert recall == pytest.approx(0.85, abs=1e-6)

    @pytest.mark.parametrize("target", [1e-9, 0.01, 0.5, 0.85, 0.99, 1.0])
    @pytest.mark.parametrize("scale", [1e-6, 0.1, 1.0, 5.0])
    def test_interval_is_never_negative(self, now, target, scale):
        assert mdm.compute_interval(MdmState(), target, scale) >= 0.0
        assert mdm.compute_interval(reviewed_state(now, 1.0), target, scale) >= 0.0

    def test_interval_is_capped(self, now):
        config = MemoryModelConfig()
        interval = mdm.compute_interval(reviewed_state(now, 1.0), 1e-9, scale=100.0)
        assert interval == config.max_interval_secs

    def test_interval_scale_has_a_floor(self, now):
        state = reviewed_state(now, 0.5)
        assert mdm.compute_interval(state, 0.8, scale=0.0) == pytest.approx(
            mdm.compute_interval(state, 0.8, scale=0.1)
        )

    def test_adaptive_desired_retention(self):
        assert mdm.adaptive_desired_retention(0.85, 0.95, 0.0, 0.0) == pytest.approx(0.87)
        assert mdm.adaptive_desired_retention(0.85, 0.5, 0.8, -0.5) == pytest.approx(0.77)
        assert mdm.adaptive_desired_retention(0.70, 0.0, 1.0, -1.0) == pytest.approx(0.70)
        assert mdm.adaptive_desired_retention(0.99, 1.0, 0.0, 1.0) == pytest.approx(0.95)


class TestEncodingVariability:
    """Test context counting and the interval bonus."""

    def test_fresh_state_has_no_bonus(self):
        state = EvmState()
        assert state.context_count == 0
        assert state.diversity_score == 0.0
        assert evm.context_diversity_bonus(state) == 0.0
        assert evm.interval_modifier(state) == 1.0

    def test_three_new_contexts(self):
        state = EvmState()
        for _ in range(3):
            evm.record_context(state, is_new_context=True)

        assert state.context_count == 3
        assert state.diversity_score > 0.0
        assert 1.0 < evm.interval_modifier(state) <= 1.3

    def test_repeated_context_does_not_count(self):
        state = EvmState()
        evm.record_context(state, is_new_context=True)
        evm.record_context(state, is_new_context=False)
        evm.record_context(state, is_new_context=False)
        assert state.context_count == 1

    def test_single_context_bonus(self):
        state = evm.record_context(EvmState(), True)
        assert state.diversity_score == pytest.approx(0.181269, abs=1e-6)
        assert evm.context_diversity_bonus(state) == pytest.approx(0.078070, abs=1e-5)

    def test_bonus_is_capped(self):
        state = EvmState()
        for _ in range(200):
            evm.record_context(state, True)
        assert state.diversity_score <= 1.0
        assert evm.interval_modifier(state) == pytest.approx(1.3)

    def test_modifier_grows_with_contexts(self):
        state = EvmState()
        previous = evm.interval_modifier(state)
        for _ in range(10):
            evm.record_context(state, True)
            current = evm.interval_modifier(state)
            assert current >= previous
            previous = current


class TestWordMastery:
    """Test the mastery tracker built on the decay model."""

    def test_new_word_is_new(self):
        assert mastery.classify_level(WordMemoryState(word_id="w1")) == MasteryLevel.NEW

    def test_learning_rate_bounds(self):
        assert mastery.learning_rate_for(1.0) == pytest.approx(0.3)
        assert mastery.learning_rate_for(10.0) == pytest.approx(0.5)
        assert mastery.learning_rate_for(0.01) == pytest.approx(0.1)

    def test_level_up_after_correct_streak(self, now):
        state = WordMemoryState(word_id="w1")
        for i in range(5):
            decision = mastery.update_mastery(
                state, True, 0.95, 1.0, 0.9, now=now + datetime.timedelta(hours=i)
            )

        assert state.mastery_level in (MasteryLevel.REVIEWING, MasteryLevel.MASTERED)
        assert state.correct_streak == 5
        assert state.total_attempts == 5
        assert state.total_correct == 5
        assert decision.word_id == "w1"
        assert decision.mastery_level == state.mastery_level
        assert decision.recall_probability == pytest.approx(1.0)
        assert decision.next_review_interval_secs > 0.0

    def test_wrong_answer_resets_streak(self, now):
        state = WordMemoryState(word_id="w1")
        mastery.update_mastery(state, True, 0.9, 1.0, 0.9, now=now)
        mastery.update_mastery(state, False, 0.1, 1.0, 0.9, now=now)
        assert state.correct_streak == 0
        assert state.total_attempts == 2
        assert state.total_correct == 1
        assert state.accuracy == pytest.approx(0.5)

    def test_lapse_after_decay_is_forgotten(self, now):
        state = WordMemoryState(word_id="w1")
        mastery.update_mastery(state, True, 1.0, 1.0, 0.9, now=now)
        decision = mastery.update_mastery(
            state, False, 0.0, 1.0, 0.9, now=now + datetime.timedelta(days=30)
        )
        assert decision.mastery_level == MasteryLevel.FORGOTTEN

    def test_decayed_word_classifies_as_forgotten(self, now):
        state = WordMemoryState(word_id="w1")
        mastery.update_mastery(state, True, 1.0, 1.0, 0.9, now=now)
        assert mastery.classify_level(state, now) == MasteryLevel.LEARNING
        assert mastery.classify_level(state, now + datetime.timedelta(days=30)) == MasteryLevel.FORGOTTEN

    def test_context_diversity_lengthens_interval(self, now):
        plain = WordMemoryState(word_id="w1")
        varied = WordMemoryState(word_id="w2")
        for _ in range(5):
            evm.record_context(varied.evm, True)

        a = mastery.update_mastery(plain, True, 0.9, 1.0, 0.85, now=now)
        b = mastery.update_mastery(varied, True, 0.9, 1.0, 0.85, now=now)
        assert b.next_review_interval_secs > a.next_review_interval_secs
