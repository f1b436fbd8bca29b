import pytest

from mr_reviewer import ci
from mr_reviewer.models.review import ReviewResult, ReviewSummary
from mr_reviewer.services.review_processor import ReviewProcessorError


class RecordingProcessor:
    instances = []
    error = None

    def __init__(self, settings):
        self.settings = settings
        self.units = []
        RecordingProcessor.instances.append(self)

    async def review(self, unit):
        self.units.append(unit)
        if RecordingProcessor.error is not None:
            raise RecordingProcessor.error
        return ReviewResult(unit=unit, summary=ReviewSummary())


@pytest.fixture(autouse=True)
def _ci_env(monkeypatch, settings):
    for name in ("CI_PROJECT_ID", "CI_MERGE_REQUEST_IID", "CI_SERVER_URL"):
        monkeypatch.delenv(name, raising=False)
    RecordingProcessor.instances = []
    RecordingProcessor.error = None
    monkeypatch.setattr(ci, "ReviewProcessor", RecordingProcessor)
    monkeypatch.setattr(ci, "get_settings", lambda: settings)


class TestCiEntryPoint:
    def test_outside_merge_request_pipeline_exits_cleanly(self):
        assert ci.main([]) == 0
        assert RecordingProcessor.instances == []

    def test_reviews_unit_from_pipeline_environment(self, monkeypatch):
        monkeypatch.setenv("CI_PROJECT_ID", "42")
        monkeypatch.setenv("CI_MERGE_REQUEST_IID", "7")
        monkeypatch.setenv("CI_SERVER_URL", "https://gitlab.internal.example")

        assert ci.main([]) == 0

        processor = RecordingProcessor.instances[0]
        assert [str(unit) for unit in processor.units] == ["42!7"]
        assert processor.settings.normalized_gitlab_api_url == "https://gitlab.internal.example/api/v4"

    def test_arguments_override_environment(self, monkeypatch):
        monkeypatch.setenv("CI_PROJECT_ID", "1")
        monkeypatch.setenv("CI_MERGE_REQUEST_IID", "2")

        assert ci.main(["--project-id", "5", "--merge-request-iid", "9"]) == 0

        assert str(RecordingProcessor.instances[0].units[0]) == "5!9"

    def test_missing_credentials_exit_with_failure(self, monkeypatch, settings):
        monkeypatch.setattr(ci, "get_settings", lambda: settings.model_copy(update={"gitlab_token": None}))

        assert ci.main(["--project-id", "5", "--merge-request-iid", "9"]) == 1
        assert RecordingProcessor.instances == []

    def test_review_failure_exits_with_failure(self):
        RecordingProcessor.error = ReviewProcessorError("boom", "fetch_changes")

        assert ci.main(["--project-id", "5", "--merge-request-iid", "9"]) == 1

    def test_non_numeric_identifiers_exit_with_failure(self):
        assert ci.main(["--project-id", "web", "--merge-request-iid", "9"]) == 1
