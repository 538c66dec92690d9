import pytest

from regression_suite import SCENARIOS


@pytest.mark.parametrize("scenario", SCENARIOS, ids=lambda fn: fn.__name__)
def test_regression_scenario(scenario):
    assert scenario() is True
