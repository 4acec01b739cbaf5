import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from analytics_errors import InvalidInputError

_NUMBER = re.compile(r"(\d+(?:\.\d+)?)")

PURCHASE_INTENT_KEYS = ('purchase_intent', 'purchase-intent', 'purchaseIntent')
PRICE_EXPECTATION_KEYS = ('price_expectation', 'price-expectation', 'priceExpectation')


@dataclass(frozen=True)
class Demographics:
    age_bracket: Optional[str] = None
    gender: Optional[str] = None
    income_bracket: Optional[str] = None
    location_type: Optional[str] = None
    education: Optional[str] = None
    occupation: Optional[str] = None

    @property
    def age_midpoint(self) -> Optional[float]:
        """Midpoint of an age bracket such as '25-34'; open brackets use their bound"""
        if not self.age_bracket:
            return None
        numbers = [float(n) for n in _NUMBER.findall(self.age_bracket)]
        if not numbers:
            return None
        if len(numbers) == 1:
            return numbers[0]
        return (numbers[0] + numbers[1]) / 2

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Demographics":
        data = data or {}
        return cls(
            age_bracket=_text(data, 'age_bracket', 'age'),
            gender=_text(data, 'gender'),
            income_bracket=_text(data, 'income_bracket', 'income'),
            location_type=_text(data, 'location_type', 'location'),
            education=_text(data, 'education'),
            occupation=_text(data, 'occupation'),
        )


@dataclass(frozen=True)
class Psychographics:
    values: Tuple[str, ...] = ()
    motivations: Tuple[str, ...] = ()
    concerns: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Psychographics":
        data = data or {}
        return cls(
            values=_tags(data, 'values'),
            motivations=_tags(data, 'motivations'),
            concerns=_tags(data, 'concerns', 'painPoints', 'pain_points'),
        )


@dataclass(frozen=True)
class Behavioral:
    channel_preference: Optional[str] = None
    category_usage: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Behavioral":
        data = data or {}
        return cls(
            channel_preference=_text(data, 'channel_preference', 'channelPreference', 'channel'),
            category_usage=_text(data, 'category_usage', 'categoryUsage'),
        )


@dataclass(frozen=True)
class SurveyResponse:
    """One respondent's answers, read-only for every analytics component"""

    response_id: str
    demographics: Demographics = field(default_factory=Demographics)
    psychographics: Psychographics = field(default_factory=Psychographics)
    behavioral: Behavioral = field(default_factory=Behavioral)
    scale_answers: Mapping[str, float] = field(default_factory=dict)
    purchase_intent: Optional[float] = None
    price_expectation: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SurveyResponse":
        """Coerce a loosely shaped response payload into a typed record"""
        if not isinstance(payload, Mapping):
            raise InvalidInputError(f"Response payload must be a mapping, got {type(payload).__name__}")

        response_id = payload.get('response_id', payload.get('id'))
        if response_id is None or str(response_id).strip() == '':
            raise InvalidInputError("Response payload is missing an id")

        answers = payload.get('answers') or {}
        if not isinstance(answers, Mapping):
            raise InvalidInputError(f"Answers for response {response_id} must be a mapping")

        # Psychographic tags may live beside the answers or in their own block
        psychographic_source = dict(answers)
        psychographic_source.update(payload.get('psychographics') or {})

        scale_answers = {}
        for key, value in answers.items():
            number = _number(value)
            if number is not None and not isinstance(value, str):
                scale_answers[str(key)] = number

        purchase_intent = _number(_first(payload, PURCHASE_INTENT_KEYS))
        if purchase_intent is None:
            purchase_intent = _number(_first(answers, PURCHASE_INTENT_KEYS))

        price_expectation = _price(_first(payload, PRICE_EXPECTATION_KEYS))
        if price_expectation is None:
            price_expectation = _price(_first(answers, PRICE_EXPECTATION_KEYS))

        return cls(
            response_id=str(response_id),
            demographics=Demographics.from_dict(payload.get('demographics')),
            psychographics=Psychographics.from_dict(psychographic_source),
            behavioral=Behavioral.from_dict(payload.get('behavioral') or payload.get('behavior')),
            scale_answers=scale_answers,
            purchase_intent=purchase_intent,
            price_expectation=price_expectation,
        )


@dataclass(frozen=True)
class SurveyData:
    """Numeric answers to a single question plus optional context"""

    responses: Tuple[float, ...]
    demographics: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def sample_size(self) -> int:
        return len(self.responses)

    @classmethod
    def from_responses(
        cls,
        responses: Iterable[float],
        demographics: Optional[Mapping[str, Any]] = None
    ) -> "SurveyData":
        values = tuple(float(r) for r in responses)
        if any(not math.isfinite(v) for v in values):
            raise InvalidInputError("Responses must be finite numbers; filter NaN values before analysis")
        return cls(
            responses=values,
            demographics=dict(demographics or {}),
            metadata={'sample_size': len(values)},
        )

    def with_responses(self, responses: Sequence[float]) -> "SurveyData":
        return SurveyData(
            responses=tuple(float(r) for r in responses),
            demographics=self.demographics,
            metadata={**self.metadata, 'sample_size': len(responses)},
        )


def _first(data: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _text(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    value = _first(data, keys)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _tags(data: Mapping[str, Any], *keys: str) -> Tuple[str, ...]:
    value = _first(data, keys)
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        return ()
    return tuple(str(tag).strip() for tag in value if str(tag).strip())


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _price(value: Any) -> Optional[float]:
    number = _number(value)
    if number is None and isinstance(value, str):
        match = _NUMBER.search(value.replace(',', ''))
        number = float(match.group(1)) if match else None
    if number is None or number <= 0:
        return None
    return number
