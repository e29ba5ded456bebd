"""
Dimension mapping: which psychological constructs a question measures.

Dimensions are persisted as plain string keys ("openness",
"neuroticism_anxiety", "depression", ...). Inside the engine the same keys
are parsed into a small typed sum (``BigFive``, ``Facet``, ``Clinical``,
``Neurodiversity``, ``Other``) so selectors can branch on the kind of
construct instead of on string prefixes.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from app.core.adaptive.repository import Item

BIG_FIVE_TRAITS = (
    "openness",
    "conscientiousness",
    "extraversion",
    "agreeableness",
    "neuroticism",
)

CLINICAL_SCALES = (
    "depression",
    "anxiety",
    "mania",
    "psychosis",
    "borderline",
    "somatic",
    "substance_use",
    "ptsd",
    "ocd",
)

NEURODIVERSITY_DIMENSIONS = (
    "adhd",
    "autism",
    "executive_function",
    "sensory_processing",
    "masking",
)

OTHER_DIMENSIONS = (
    "attachment",
    "attachment_anxiety",
    "attachment_avoidance",
    "trauma",
    "aces",
    "complex_ptsd",
    "cognitive",
)

# Clinical tags that map to a dimension of the same name
_DIRECT_CLINICAL_TAGS = ("depression", "anxiety", "mania", "psychosis", "borderline", "somatic")

CLINICAL_INSTRUMENT_DIMENSIONS: Dict[str, str] = {
    "PHQ-9": "depression",
    "GAD-7": "anxiety",
    "MDQ": "mania",
    "PQ-B": "psychosis",
    "MSI-BPD": "borderline",
    "PHQ-15": "somatic",
    "AUDIT": "substance_use",
    "DAST": "substance_use",
}

_NEURODIVERSITY_SUBCATEGORIES = ("adhd", "autism", "executive_function", "sensory_processing")

DISPLAY_NAMES: Dict[str, str] = {
    "openness": "Openness to Experience",
    "conscientiousness": "Conscientiousness",
    "extraversion": "Extraversion",
    "agreeableness": "Agreeableness",
    "neuroticism": "Emotional Stability",
    "depression": "Depression",
    "anxiety": "Anxiety",
    "mania": "Mania/Hypomania",
    "psychosis": "Psychosis Risk",
    "borderline": "Borderline Features",
    "somatic": "Somatic Symptoms",
    "substance_use": "Substance Use",
    "ptsd": "PTSD",
    "ocd": "OCD",
    "adhd": "ADHD",
    "autism": "Autism",
    "executive_function": "Executive Function",
    "sensory_processing": "Sensory Processing",
    "masking": "Neurodivergent Masking",
    "attachment": "Attachment Style",
    "attachment_anxiety": "Attachment Anxiety",
    "attachment_avoidance": "Attachment Avoidance",
    "trauma": "Trauma",
    "aces": "Adverse Childhood Experiences",
    "complex_ptsd": "Complex PTSD",
    "cognitive": "Cognitive Function",
}


@dataclass(frozen=True)
class BigFive:
    trait: str

    @property
    def key(self) -> str:
        return self.trait


@dataclass(frozen=True)
class Facet:
    trait: str
    facet: str

    @property
    def key(self) -> str:
        return f"{self.trait}_{self.facet}"


@dataclass(frozen=True)
class Clinical:
    scale: str

    @property
    def key(self) -> str:
        return self.scale


@dataclass(frozen=True)
class Neurodiversity:
    kind: str

    @property
    def key(self) -> str:
        return self.kind


@dataclass(frozen=True)
class Other:
    category: str

    @property
    def key(self) -> str:
        return self.category


Dimension = Union[BigFive, Facet, Clinical, Neurodiversity, Other]


def parse_dimension(key: str) -> Dimension:
    """
    Parse a persisted dimension key into its typed form.

    Facet keys are ``<trait>_<facet>`` where trait is a Big Five trait. Unknown
    keys become ``Other`` so persisted state from older item banks still loads.

    Args:
        key: Dimension key, case-insensitive.

    Returns:
        The matching BigFive, Facet, Clinical, Neurodiversity or Other value.
    """
    key = key.lower()
    if key in BIG_FIVE_TRAITS:
        return BigFive(key)
    for trait in BIG_FIVE_TRAITS:
        prefix = f"{trait}_"
        if key.startswith(prefix) and len(key) > len(prefix):
            return Facet(trait, key[len(prefix):])
    if key in CLINICAL_SCALES:
        return Clinical(key)
    if key in NEURODIVERSITY_DIMENSIONS:
        return Neurodiversity(key)
    return Other(key)


def _tags(item: Item) -> List[str]:
    return [tag.lower() for tag in item.tags]


def _dedupe(keys: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            result.append(key)
    return result


class DimensionMapper:
    """Pure classification of items into dimension keys."""

    @staticmethod
    def get_dimensions(item: Item) -> List[str]:
        """Return the ordered, de-duplicated dimension keys measured by ``item``."""
        keys: List[str] = []
        category = item.category

        if category == "personality":
            if item.trait:
                keys.append(item.trait.lower())
                if item.facet:
                    keys.append(f"{item.trait.lower()}_{item.facet.lower()}")

        elif category == "clinical_psychopathology":
            for tag in _tags(item):
                if tag in _DIRECT_CLINICAL_TAGS:
                    keys.append(tag)
                if "substance" in tag or tag in ("alcohol", "drug"):
                    keys.append("substance_use")
                if tag in ("ptsd", "trauma"):
                    keys.append("ptsd")
                if tag == "ocd":
                    keys.append("ocd")
            if item.instrument in CLINICAL_INSTRUMENT_DIMENSIONS:
                keys.append(CLINICAL_INSTRUMENT_DIMENSIONS[item.instrument])

        elif category == "neurodiversity":
            for tag in _tags(item):
                if tag in ("adhd", "autism", "executive_function", "masking"):
                    keys.append(tag)
                if tag in ("sensory", "sensory_processing"):
                    keys.append("sensory_processing")
            if not keys and item.subcategory:
                subcategory = item.subcategory.lower()
                if subcategory in _NEURODIVERSITY_SUBCATEGORIES:
                    keys.append(subcategory)

        elif category == "attachment":
            keys.append("attachment")
            for tag in _tags(item):
                if "anxious" in tag:
                    keys.append("attachment_anxiety")
                if "avoidant" in tag:
                    keys.append("attachment_avoidance")

        elif category == "trauma_screening":
            keys.append("trauma")
            for tag in _tags(item):
                if tag in ("aces", "complex_ptsd"):
                    keys.append(tag)

        elif category in ("cognitive_functions", "cognitive"):
            keys.append("cognitive")

        return _dedupe(keys)

    @classmethod
    def get_typed_dimensions(cls, item: Item) -> List[Dimension]:
        return [parse_dimension(key) for key in cls.get_dimensions(item)]

    @classmethod
    def measures_dimension(cls, item: Item, dimension: str) -> bool:
        return dimension.lower() in cls.get_dimensions(item)

    @classmethod
    def primary_dimension(cls, item: Item) -> Optional[str]:
        keys = cls.get_dimensions(item)
        return keys[0] if keys else None

    @classmethod
    def group_by_dimension(cls, items: Iterable[Item]) -> Dict[str, List[Item]]:
        grouped: Dict[str, List[Item]] = {}
        for item in items:
            for key in cls.get_dimensions(item):
                grouped.setdefault(key, []).append(item)
        return grouped

    @staticmethod
    def all_dimensions() -> List[str]:
        return [
            *BIG_FIVE_TRAITS,
            *CLINICAL_SCALES,
            *NEURODIVERSITY_DIMENSIONS,
            *OTHER_DIMENSIONS,
        ]

    @staticmethod
    def is_big_five(dimension: str) -> bool:
        return isinstance(parse_dimension(dimension), BigFive)

    @staticmethod
    def is_clinical(dimension: str) -> bool:
        return isinstance(parse_dimension(dimension), Clinical)

    @staticmethod
    def is_neurodiversity(dimension: str) -> bool:
        return isinstance(parse_dimension(dimension), Neurodiversity)

    @staticmethod
    def display_name(dimension: str) -> str:
        return DISPLAY_NAMES.get(dimension.lower(), dimension)
