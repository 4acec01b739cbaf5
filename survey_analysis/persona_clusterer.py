from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from analytics_logging import get_logger
from survey_models import SurveyResponse

logger = get_logger(__name__)

UNKNOWN = 'unknown'
TOP_TAGS = 4
ARCHETYPES = [
    'The Informed Buyer',
    'The Value Seeker',
    'The Premium Customer',
    'The Cautious Researcher',
    'The Early Adopter',
]
DEFAULT_ARCHETYPE = 'The Potential Customer'


@dataclass(frozen=True)
class PersonaCharacteristics:
    size: int
    mean_age: Optional[float]
    modal_gender: Optional[str]
    modal_income: Optional[str]
    modal_location: Optional[str]
    modal_channel: Optional[str]
    mean_purchase_intent: Optional[float]
    mean_acceptable_price: Optional[float]
    top_values: Tuple[str, ...]
    top_pain_points: Tuple[str, ...]
    top_motivations: Tuple[str, ...]


@dataclass(frozen=True)
class PersonaCluster:
    key: Tuple[str, str, str]
    responses: Tuple[SurveyResponse, ...]
    characteristics: PersonaCharacteristics

    @property
    def size(self) -> int:
        return len(self.responses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': {'age_bracket': self.key[0], 'gender': self.key[1], 'income_bracket': self.key[2]},
            'size': self.size,
            'response_ids': [r.response_id for r in self.responses],
            'characteristics': asdict(self.characteristics),
        }


@dataclass(frozen=True)
class Persona:
    persona_id: str
    archetype: str
    narrative: str
    cluster: PersonaCluster
    used_fallback: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'persona_id': self.persona_id,
            'archetype': self.archetype,
            'narrative': self.narrative,
            'used_fallback': self.used_fallback,
            'cluster': self.cluster.to_dict(),
        }


class PersonaNarrator(ABC):
    """Turns a cluster's aggregated characteristics into narrative text.

    Implementations may call out to external text generators; clustering
    never depends on them.
    """

    @abstractmethod
    def archetype(self, characteristics: PersonaCharacteristics, index: int) -> str:
        pass

    @abstractmethod
    def narrate(self, characteristics: PersonaCharacteristics, index: int) -> str:
        pass


class TemplatePersonaNarrator(PersonaNarrator):
    """Deterministic narrator built from fixed archetypes"""

    def archetype(self, characteristics: PersonaCharacteristics, index: int) -> str:
        return ARCHETYPES[index] if index < len(ARCHETYPES) else DEFAULT_ARCHETYPE

    def narrate(self, characteristics: PersonaCharacteristics, index: int) -> str:
        c = characteristics
        parts = [f'{self.archetype(c, index)} represents {c.size} survey respondents']

        profile = []
        if c.mean_age is not None:
            profile.append(f'around {c.mean_age:.0f} years old')
        if c.modal_gender:
            profile.append(f'mostly {c.modal_gender}')
        if c.modal_income:
            profile.append(f'earning {c.modal_income}')
        if c.modal_location:
            profile.append(f'living in {c.modal_location} areas')
        if profile:
            parts.append(', '.join(profile))

        if c.mean_purchase_intent is not None:
            parts.append(f'average purchase intent {c.mean_purchase_intent:.1f}')
        if c.mean_acceptable_price is not None:
            parts.append(f'expects to pay about ${c.mean_acceptable_price:.2f}')

        text = '; '.join(parts) + '.'
        if c.top_values:
            text += f' Values: {", ".join(c.top_values)}.'
        if c.top_pain_points:
            text += f' Pain points: {", ".join(c.top_pain_points)}.'
        return text


class PersonaClusterer:
    """Demographic clustering of survey responses into persona segments"""

    def __init__(self, min_cluster_size: int = 5, max_clusters: int = 5):
        self.min_cluster_size = min_cluster_size
        self.max_clusters = max_clusters
        self.template_narrator = TemplatePersonaNarrator()

    def cluster(self, responses: Sequence[SurveyResponse]) -> List[PersonaCluster]:
        """Group by (age bracket, gender, income bracket), largest clusters first"""
        if not responses:
            return []

        frame = pd.DataFrame({
            'position': range(len(responses)),
            'age_bracket': [r.demographics.age_bracket or UNKNOWN for r in responses],
            'gender': [r.demographics.gender or UNKNOWN for r in responses],
            'income_bracket': [r.demographics.income_bracket or UNKNOWN for r in responses],
        })

        clusters = []
        skipped = 0
        for key, group in frame.groupby(['age_bracket', 'gender', 'income_bracket'], sort=False):
            if len(group) < self.min_cluster_size:
                skipped += 1
                continue
            members = tuple(responses[i] for i in group['position'])
            clusters.append(PersonaCluster(
                key=tuple(key),
                responses=members,
                characteristics=aggregate_characteristics(members),
            ))

        if skipped:
            logger.debug("Dropped small clusters", skipped=skipped, min_cluster_size=self.min_cluster_size)

        # Stable sort keeps first-seen order among equal sizes
        clusters.sort(key=lambda c: -c.size)
        return clusters[:self.max_clusters]

    def generate_personas(
        self,
        responses: Sequence[SurveyResponse],
        narrator: Optional[PersonaNarrator] = None
    ) -> List[Persona]:
        """Cluster first, then attach narrative text to each cluster"""
        clusters = self.cluster(responses)
        personas = []

        for index, cluster in enumerate(clusters):
            used_fallback = narrator is None
            archetype = narrative = None
            if narrator is not None:
                try:
                    archetype = narrator.archetype(cluster.characteristics, index)
                    narrative = narrator.narrate(cluster.characteristics, index)
                except Exception as e:
                    logger.warning("Persona narrator failed, using template",
                                   cluster_key=cluster.key, error=str(e), exc_info=True)
                    used_fallback = True

            if used_fallback:
                archetype = self.template_narrator.archetype(cluster.characteristics, index)
                narrative = self.template_narrator.narrate(cluster.characteristics, index)

            personas.append(Persona(
                persona_id=f'persona-{index + 1}',
                archetype=archetype,
                narrative=narrative,
                cluster=cluster,
                used_fallback=used_fallback,
            ))

        logger.info("Personas generated", responses=len(responses), personas=len(personas))
        return personas


def aggregate_characteristics(responses: Sequence[SurveyResponse]) -> PersonaCharacteristics:
    ages = [r.demographics.age_midpoint for r in responses if r.demographics.age_midpoint is not None]
    intents = [r.purchase_intent for r in responses if r.purchase_intent is not None]
    prices = [r.price_expectation for r in responses if r.price_expectation is not None]

    return PersonaCharacteristics(
        size=len(responses),
        mean_age=_mean(ages),
        modal_gender=_mode(r.demographics.gender for r in responses),
        modal_income=_mode(r.demographics.income_bracket for r in responses),
        modal_location=_mode(r.demographics.location_type for r in responses),
        modal_channel=_mode(r.behavioral.channel_preference for r in responses),
        mean_purchase_intent=_mean(intents),
        mean_acceptable_price=_mean(prices),
        top_values=_top(tag for r in responses for tag in r.psychographics.values),
        top_pain_points=_top(tag for r in responses for tag in r.psychographics.concerns),
        top_motivations=_top(tag for r in responses for tag in r.psychographics.motivations),
    )


def _mean(values: List[float]) -> Optional[float]:
    return float(sum(values) / len(values)) if values else None


def _mode(values: Iterable[Optional[str]]) -> Optional[str]:
    # Counter breaks ties by first occurrence
    counts = Counter(v for v in values if v)
    return counts.most_common(1)[0][0] if counts else None


def _top(tags: Iterable[str], limit: int = TOP_TAGS) -> Tuple[str, ...]:
    return tuple(tag for tag, _ in Counter(tags).most_common(limit))
