"""
Stage 1: Broad Screening (12-15 items).

Fixed composition giving a first read on every major area:
    - one anchor item per Big Five trait
    - the two-item depression and anxiety screeners (PHQ-2 / GAD-2)
    - one flag item each for ADHD, autism and sensory processing
    - one inconsistency pair plus one infrequency item
"""

import logging
from typing import List

from app.core.adaptive.dimensions import BIG_FIVE_TRAITS
from app.core.adaptive.repository import Item, ItemQuery, ItemSort
from app.core.adaptive.selection import (
    VALIDITY_CATEGORY,
    BatchBuilder,
    SelectionContext,
    StageSelector,
    add_inconsistency_pair,
    chunked_shuffle,
    truncate_keeping,
)

logger = logging.getLogger(__name__)

ANCHOR_TAGS = ("anchor", "high_loading")
ANCHOR_MIN_DISCRIMINATION = 0.7

NEURODIVERSITY_FLAG_TAGS = (
    ("adhd",),
    ("autism",),
    ("sensory", "sensory_processing"),
)


class BroadScreeningStage(StageSelector):
    stage = 1
    name = "Broad Screening"
    description = "Initial assessment across all major dimensions"
    target_confidence = 30.0
    min_questions_per_dimension = 1

    def select_questions(self, context: SelectionContext) -> List[Item]:
        builder = BatchBuilder(context.repository, context.excluded_ids)

        anchors = self._select_big_five_anchors(builder)
        screeners = self._select_clinical_screeners(builder, context)
        flags = self._select_neurodiversity_flags(builder)
        pair = add_inconsistency_pair(builder)
        infrequency = builder.add(
            [builder.find_one(ItemQuery(category=VALIDITY_CATEGORY, subcategory="infrequency"))]
        )

        logger.debug(
            f"Stage 1 composition: {len(anchors)} anchors, {len(screeners)} screeners, "
            f"{len(flags)} neurodiversity flags, {len(pair) + len(infrequency)} validity"
        )

        limits = context.config.batch_limits_for(self.stage)
        shuffled = chunked_shuffle(builder.items, context.rng)
        return truncate_keeping(
            shuffled, limits.max_items, keep_ids=[item.question_id for item in pair]
        )

    def _select_big_five_anchors(self, builder: BatchBuilder) -> List[Item]:
        anchors = []
        for trait in BIG_FIVE_TRAITS:
            anchor = builder.find_one(
                ItemQuery(
                    category="personality",
                    traits=(trait,),
                    any_of=(
                        ItemQuery(any_tags=ANCHOR_TAGS),
                        ItemQuery(min_discrimination=ANCHOR_MIN_DISCRIMINATION),
                    ),
                ),
                order=ItemSort.DISCRIMINATION_DESC,
            )
            if anchor is None:
                anchor = builder.find_one(ItemQuery(category="personality", traits=(trait,)))
            if anchor is None:
                logger.warning(f"No personality item available for trait {trait}")
                continue
            anchors.extend(builder.add([anchor]))
        return anchors

    def _select_clinical_screeners(
        self, builder: BatchBuilder, context: SelectionContext
    ) -> List[Item]:
        screeners = []
        for screener_ids, instrument in (
            (context.config.depression_screener_ids, "PHQ-9"),
            (context.config.anxiety_screener_ids, "GAD-7"),
        ):
            screeners.extend(
                builder.take_relaxed(
                    [
                        ItemQuery(instruments=(instrument,), question_ids=screener_ids),
                        ItemQuery(instruments=(instrument,)),
                    ],
                    limit=len(screener_ids),
                )
            )
        return screeners

    def _select_neurodiversity_flags(self, builder: BatchBuilder) -> List[Item]:
        flags = []
        for tags in NEURODIVERSITY_FLAG_TAGS:
            flag = builder.find_one(
                ItemQuery(category="neurodiversity", any_tags=tags),
                order=ItemSort.DISCRIMINATION_DESC,
            )
            flags.extend(builder.add([flag]))
        return flags
