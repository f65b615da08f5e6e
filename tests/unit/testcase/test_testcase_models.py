"""Domain classes named Test* are not collected by pytest."""

import pytest

from casebook.core.modules.testcase.models import (
    TestCase,
    TestCaseCreate,
    TestCaseStatus,
    TestCaseUpdate,
    TestStep,
    TestStepInput,
)
from casebook.core.modules.testcase.service import TestCaseService

DOMAIN_CLASSES = [TestCase, TestCaseCreate, TestCaseStatus, TestCaseUpdate, TestStep, TestStepInput, TestCaseService]


@pytest.mark.parametrize("cls", DOMAIN_CLASSES)
def test_not_collected(cls):
    assert cls.__test__ is False


def test_marker_is_not_a_field_or_member():
    assert "__test__" not in TestCase.model_fields
    assert "__test__" not in TestStep.model_fields
    assert [status.value for status in TestCaseStatus] == ["draft", "active", "deprecated"]
