"""
Tests for facet prioritization used by Stage 2.
"""

import pytest

from app.core.adaptive.facet_intelligence import (
    BASE_PRIORITY,
    FACET_CYCLE,
    NEO_FACETS,
    PersonalityProfile,
    prioritize_facets,
    recommended_facet_count,
)


def _priorities(trait, profile=None):
    return {p.facet: p.priority for p in prioritize_facets(trait, profile)}


class TestPrioritizeFacets:
    """Tests for prioritize_facets."""

    def test_returns_all_six_facets(self):
        for trait in NEO_FACETS:
            assert len(prioritize_facets(trait)) == 6

    def test_unknown_trait_returns_empty(self):
        assert prioritize_facets("honesty_humility") == []

    def test_neutral_profile_neuroticism(self):
        # With everything at 50: anxiety gets the C < 62.5 boost and
        # angry_hostility the A >= 50 suppression
        priorities = _priorities("neuroticism")
        assert priorities["anxiety"] == BASE_PRIORITY + 3
        assert priorities["angry_hostility"] == BASE_PRIORITY - 4
        assert priorities["depression"] == BASE_PRIORITY

    def test_anxiety_rules_stack(self):
        profile = PersonalityProfile(
            big_five={"conscientiousness": 40.0, "extraversion": 30.0},
            neurodiversity={"emotional_regulation": 70.0},
        )
        ranked = prioritize_facets("neuroticism", profile)
        assert ranked[0].facet == "anxiety"
        assert ranked[0].priority == 5 + 3 + 6 + 3

    def test_low_agreeableness_boosts_angry_hostility(self):
        profile = PersonalityProfile(big_five={"agreeableness": 30.0})
        assert _priorities("neuroticism", profile)["angry_hostility"] == BASE_PRIORITY + 4

    def test_thresholds_are_strict(self):
        # Exactly 62.5 is not "> 62.5"
        profile = PersonalityProfile(neurodiversity={"executive": 62.5})
        assert _priorities("conscientiousness", profile)["self_discipline"] == BASE_PRIORITY

    def test_executive_proxy_boosts_conscientiousness_facets(self):
        profile = PersonalityProfile(neurodiversity={"executive": 80.0})
        priorities = _priorities("conscientiousness", profile)
        assert priorities["self_discipline"] == BASE_PRIORITY + 4
        assert priorities["order"] == BASE_PRIORITY + 3
        assert priorities["deliberation"] == BASE_PRIORITY + 3

    def test_ties_keep_declaration_order(self):
        ranked = [p.facet for p in prioritize_facets("openness")]
        assert ranked == FACET_CYCLE["openness"]

    def test_sorted_descending(self):
        profile = PersonalityProfile(
            big_five={"neuroticism": 80.0}, neurodiversity={"sensory": 90.0}
        )
        values = [p.priority for p in prioritize_facets("openness", profile)]
        assert values == sorted(values, reverse=True)
        assert prioritize_facets("openness", profile)[0].facet == "feelings"


class TestPersonalityProfile:
    def test_missing_values_read_neutral(self):
        profile = PersonalityProfile()
        assert profile.trait("openness") == 50.0
        assert profile.proxy("executive") == 50.0

    def test_from_scores_builds_proxies(self):
        profile = PersonalityProfile.from_scores(
            {
                "openness": 70.0,
                "openness_ideas": 90.0,
                "borderline": 65.0,
                "adhd": 40.0,
                "executive_function": 72.0,
                "autism": 55.0,
                "sensory_processing": 61.0,
            }
        )
        assert profile.big_five == {"openness": 70.0}
        assert profile.neurodiversity == {
            "emotional_regulation": 65.0,
            "executive": 72.0,
            "social": 55.0,
            "sensory": 61.0,
        }


class TestRecommendedFacetCount:
    """Extremity bands decide how many facets are covered."""

    @pytest.mark.parametrize(
        "score, expected",
        [
            (50.0, 3),
            (60.0, 3),
            (65.0, 4),
            (30.0, 4),
            (80.0, 5),
            (90.0, 6),
            (5.0, 6),
        ],
    )
    def test_bands_with_large_allocation(self, score, expected):
        assert recommended_facet_count(score, 20) == expected

    def test_small_allocation_caps_count(self):
        assert recommended_facet_count(95.0, 4) == 2
        assert recommended_facet_count(50.0, 4) == 1

    def test_never_exceeds_six(self):
        assert recommended_facet_count(100.0, 1000) == 6
