"""
Tests for Stage 1 (broad screening).
"""

from collections import Counter

from app.core.adaptive.config import AdaptiveEngineConfig, StageBatchLimits
from app.core.adaptive.repository import InMemoryQuestionRepository
from app.core.adaptive.selection import VALIDITY_CATEGORY
from app.core.adaptive.stage_broad_screening import BroadScreeningStage
from tests.conftest import make_item


def _ids(items):
    return [i.question_id for i in items]


class TestComposition:
    """Composition against the full synthetic bank."""

    def test_full_batch(self, context_factory):
        items = BroadScreeningStage().select_questions(context_factory())
        assert len(items) == 15
        assert len(set(_ids(items))) == 15

    def test_one_anchor_per_trait(self, context_factory):
        items = BroadScreeningStage().select_questions(context_factory())
        anchors = [i for i in items if i.category == "personality"]
        assert Counter(i.trait for i in anchors) == Counter(
            ["openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism"]
        )
        assert all(
            i.has_tag("anchor") or i.has_tag("high_loading") or (i.discrimination_index or 0) >= 0.7
            for i in anchors
        )

    def test_anchor_is_most_discriminating_qualifier(self, context_factory):
        repo = InMemoryQuestionRepository(
            [
                make_item("O_TAGGED", trait="openness", tags=("anchor",), discrimination_index=0.6),
                make_item("O_STRONG", trait="openness", discrimination_index=0.9),
                make_item(
                    "C_TAGGED",
                    trait="conscientiousness",
                    tags=("anchor",),
                    discrimination_index=0.5,
                ),
                make_item("C_WEAK", trait="conscientiousness", discrimination_index=0.65),
            ]
        )
        ids = set(_ids(BroadScreeningStage().select_questions(context_factory(repo=repo))))
        assert "O_STRONG" in ids and "O_TAGGED" not in ids
        assert "C_TAGGED" in ids and "C_WEAK" not in ids

    def test_canonical_screeners(self, context_factory):
        ids = set(_ids(BroadScreeningStage().select_questions(context_factory())))
        assert {
            "DEPRESSION_PHQ9_1",
            "DEPRESSION_PHQ9_2",
            "ANXIETY_GAD7_1",
            "ANXIETY_GAD7_2",
        } <= ids

    def test_neurodiversity_flags(self, context_factory):
        items = BroadScreeningStage().select_questions(context_factory())
        flags = sorted(i.subcategory for i in items if i.category == "neurodiversity")
        assert flags == ["adhd", "autism", "sensory"]

    def test_validity_items(self, context_factory):
        items = BroadScreeningStage().select_questions(context_factory())
        validity = sorted(_ids(i for i in items if i.category == VALIDITY_CATEGORY))
        assert validity == ["VALIDITY_INCONS_1A", "VALIDITY_INCONS_1B", "VALIDITY_INFREQUENCY_1"]

    def test_excluded_ids_are_never_returned(self, context_factory, item_bank):
        excluded = {"BFI_OPENNESS_ANCHOR", "DEPRESSION_PHQ9_1", "VALIDITY_INCONS_1A"}
        items = BroadScreeningStage().select_questions(context_factory(excluded_ids=excluded))
        ids = set(_ids(items))
        assert not ids & excluded
        # Pair 1 is broken, so pair 2 is used instead
        assert {"VALIDITY_INCONS_2A", "VALIDITY_INCONS_2B"} <= ids

    def test_same_seed_same_order(self, context_factory):
        first = _ids(BroadScreeningStage().select_questions(context_factory(seed=1)))
        again = _ids(BroadScreeningStage().select_questions(context_factory(seed=1)))
        assert first == again
        assert sorted(first) == sorted(
            _ids(BroadScreeningStage().select_questions(context_factory(seed=2)))
        )


class TestFallbacks:
    """Fallbacks for banks without tagged anchors or canonical ids."""

    def test_anchor_falls_back_to_any_trait_item(self, context_factory):
        repo = InMemoryQuestionRepository(
            [make_item("LOW_O", trait="openness", discrimination_index=0.4)]
        )
        items = BroadScreeningStage().select_questions(context_factory(repo=repo))
        assert _ids(items) == ["LOW_O"]

    def test_high_discrimination_counts_as_anchor(self, context_factory):
        repo = InMemoryQuestionRepository(
            [
                make_item("O_LOW", trait="openness", discrimination_index=0.4),
                make_item("O_HIGH", trait="openness", discrimination_index=0.8),
            ]
        )
        items = BroadScreeningStage().select_questions(context_factory(repo=repo))
        assert _ids(items) == ["O_HIGH"]

    def test_screeners_fall_back_to_instrument(self, context_factory):
        repo = InMemoryQuestionRepository(
            [
                make_item(f"PHQ_{n}", category="clinical_psychopathology", instrument="PHQ-9")
                for n in range(1, 4)
            ]
        )
        items = BroadScreeningStage().select_questions(context_factory(repo=repo))
        assert sorted(_ids(items)) == ["PHQ_1", "PHQ_2"]

    def test_truncates_to_stage_maximum_keeping_pair(self, context_factory):
        bank = [
            make_item(f"{trait}_{n}", trait=trait, tags=("anchor",))
            for trait in ("openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism")
            for n in range(2)
        ]
        bank += [
            make_item(f"ND_{tag}", category="neurodiversity", tags=(tag,))
            for tag in ("adhd", "autism", "sensory")
        ]
        bank += [
            make_item(f"PHQ_{n}", category="clinical_psychopathology", instrument="PHQ-9")
            for n in range(4)
        ]
        bank += [
            make_item(f"GAD_{n}", category="clinical_psychopathology", instrument="GAD-7")
            for n in range(4)
        ]
        bank += [
            make_item("PAIR_1A", category=VALIDITY_CATEGORY, subcategory="inconsistency", pair_number=1),
            make_item("PAIR_1B", category=VALIDITY_CATEGORY, subcategory="inconsistency", pair_number=1),
            make_item("INF_1", category=VALIDITY_CATEGORY, subcategory="infrequency"),
        ]
        repo = InMemoryQuestionRepository(bank)
        limits = dict(AdaptiveEngineConfig().stage_batch_limits)
        limits[1] = StageBatchLimits(min_items=10, target_items=11, max_items=12)
        config = AdaptiveEngineConfig(stage_batch_limits=limits)
        for seed in range(5):
            items = BroadScreeningStage().select_questions(
                context_factory(repo=repo, config=config, seed=seed)
            )
            assert len(items) == 12
            assert {"PAIR_1A", "PAIR_1B"} <= set(_ids(items))
