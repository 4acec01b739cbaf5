"""Shared fixtures for the survey analytics test suites."""

from typing import List

import pytest

from survey_analysis.maxdiff import MaxDiffResponse
from survey_models import SurveyResponse


DEMO_PRICES = {
    'too_expensive': [150, 120, 180, 200, 160, 140, 170, 190, 130, 110],
    'expensive_but_consider': [100, 80, 120, 140, 90, 110, 130, 95, 85, 105],
    'good_value': [60, 50, 70, 80, 55, 65, 75, 45, 40, 58],
    'too_cheap': [20, 15, 25, 30, 18, 22, 28, 12, 10, 16],
}

MAXDIFF_FEATURES = ['Battery life', 'Camera', 'Price', 'Storage', 'Design']


def likert_responses(n: int, positives: int) -> List[float]:
    """n answers on a 1-5 scale with exactly ``positives`` answers >= 4"""
    positive_values = [4.0, 5.0]
    negative_values = [1.0, 2.0, 3.0]
    answers = [positive_values[i % 2] for i in range(positives)]
    answers += [negative_values[i % 3] for i in range(n - positives)]
    return answers


@pytest.fixture
def demo_prices():
    return {band: list(values) for band, values in DEMO_PRICES.items()}


@pytest.fixture
def maxdiff_features():
    return list(MAXDIFF_FEATURES)


@pytest.fixture
def maxdiff_responses():
    """Twelve respondents who consistently rank Battery life best and Design worst"""
    responses = []
    for respondent in range(12):
        rid = f'r{respondent}'
        responses.append(MaxDiffResponse('Battery life', 'Design', rid, 'maxdiff_1', 9000))
        responses.append(MaxDiffResponse('Camera', 'Storage', rid, 'maxdiff_2', 8000))
        responses.append(MaxDiffResponse('Battery life', 'Price', rid, 'maxdiff_3', 8500))
    return responses


def make_response(response_id, age, gender, income, **extra) -> SurveyResponse:
    payload = {
        'id': response_id,
        'demographics': {'age': age, 'gender': gender, 'income': income, 'location': extra.pop('location', 'Urban')},
        'answers': extra.pop('answers', {}),
    }
    payload.update(extra)
    return SurveyResponse.from_dict(payload)


@pytest.fixture
def persona_responses():
    """Three demographic groups of sizes 7, 6 and 3"""
    responses = []
    for i in range(7):
        responses.append(make_response(
            f'a{i}', '25-34', 'Female', '$50,000-$75,000',
            answers={
                'purchase-intent': 8,
                'price-expectation': '$40',
                'values': ['Quality', 'Sustainability'],
                'concerns': 'Price',
            },
        ))
    for i in range(6):
        responses.append(make_response(
            f'b{i}', '45-54', 'Male', '$100,000+',
            answers={'purchaseIntent': 6, 'priceExpectation': 80, 'values': ['Convenience']},
        ))
    for i in range(3):
        responses.append(make_response(f'c{i}', '18-24', 'Female', 'Under $25,000'))
    return responses
