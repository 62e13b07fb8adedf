import pytest

from maestro.classifier import TaskClassifier, TaskEstimate, band_for
from maestro.config import ClassificationConfig
from maestro.errors import UnclassifiedTask
from maestro.stack import StackProfile


def test_login_button_crash_is_a_small_bug_fix() -> None:
    classification = TaskClassifier().classify(
        "fix the login button crash", StackProfile(frontend_framework="React")
    )

    assert classification.task_type == "bug_fix"
    assert classification.complexity in {"trivial", "simple"}
    assert classification.estimate.files_touched == 1
    assert classification.risk_level == "low"
    assert "fix" in classification.matched_keywords


def test_payment_is_critical_regardless_of_size() -> None:
    classifier = TaskClassifier()
    tiny = TaskEstimate(lines_of_code=3, files_touched=1)

    classification = classifier.classify("fix typo in payment receipt", estimate=tiny)

    assert classification.risk_level == "critical"
    assert classification.complexity == "trivial"


def test_security_keywords_force_high_risk() -> None:
    classifier = TaskClassifier()

    assert classifier.risk("add password reset flow") == "high"
    assert classifier.risk("run the data migration for orders") == "high"
    assert classifier.risk("update the api client") == "medium"
    assert classifier.risk("tweak the footer colour") == "low"


def test_task_type_rules_are_ordered() -> None:
    classifier = TaskClassifier()

    assert classifier.task_type("fix the XSS vulnerability in comments")[0] == "security"
    assert classifier.task_type("refactor the order service")[0] == "refactor"
    assert classifier.task_type("add unit test coverage for cart")[0] == "testing"
    assert classifier.task_type("update the README")[0] == "documentation"
    assert classifier.task_type("implement dark mode")[0] == "new_feature"


def test_keywords_match_whole_words_only() -> None:
    classifier = TaskClassifier()

    # "prefix" contains "fix" but is not a bug fix
    assert classifier.task_type("add a prefix to invoice numbers")[0] == "new_feature"


def test_unmatched_description_raises_unclassified() -> None:
    with pytest.raises(UnclassifiedTask) as excinfo:
        TaskClassifier().classify("hello there")

    assert "bug_fix" in excinfo.value.options


def test_complexity_is_maximum_of_bands() -> None:
    classifier = TaskClassifier()

    assert classifier.complexity(TaskEstimate(lines_of_code=8, files_touched=1)) == "trivial"
    assert classifier.complexity(TaskEstimate(lines_of_code=8, files_touched=6)) == "moderate"
    assert classifier.complexity(TaskEstimate(lines_of_code=300, files_touched=1)) == "complex"
    assert classifier.complexity(TaskEstimate(lines_of_code=900, files_touched=2)) == "critical"
    assert (
        classifier.complexity(TaskEstimate(lines_of_code=8, files_touched=1, new_pattern=True))
        == "complex"
    )


def test_thresholds_are_configurable() -> None:
    config = ClassificationConfig(loc_bands=[1, 2, 3, 4], file_bands=[1, 1, 1, 1])
    classifier = TaskClassifier(config)

    assert classifier.complexity(TaskEstimate(lines_of_code=3, files_touched=1)) == "moderate"
    assert classifier.complexity(TaskEstimate(lines_of_code=1, files_touched=2)) == "critical"


def test_band_for_uses_inclusive_upper_bounds() -> None:
    bounds = [10, 50, 200, 500]

    assert band_for(10, bounds) == "trivial"
    assert band_for(11, bounds) == "simple"
    assert band_for(500, bounds) == "complex"
    assert band_for(501, bounds) == "critical"


def test_wide_scope_wording_raises_estimate() -> None:
    classifier = TaskClassifier()

    narrow = classifier.estimate("refactor the date helper")
    wide = classifier.estimate("refactor logging across the entire codebase")

    assert wide.files_touched > narrow.files_touched
    assert wide.lines_of_code > narrow.lines_of_code


def test_explicit_task_type_skips_keyword_rules() -> None:
    classification = TaskClassifier().classify("hello there", task_type="documentation")

    assert classification.task_type == "documentation"
    assert classification.matched_keywords == ()
