import asyncio

import pytest

from mr_reviewer.completion_client import CompletionClient
from mr_reviewer.errors import ConfigurationError
from mr_reviewer.gitlab_client import GitLabClient
from mr_reviewer.models.review import ReviewUnit
from mr_reviewer.queue.models import MergeRequestEvent
from mr_reviewer.services.aggregator import PASSED_MESSAGE
from mr_reviewer.services.review_processor import (
    ReviewProcessor,
    ReviewProcessorError,
    review_skip_reason,
)

from conftest import DIFF_A, CompletionStub, GitLabStub, change_entry

UNIT = ReviewUnit(project_id=42, merge_request_iid=7)

REPLY = "\n".join(
    [
        "- src/a.ts:2 | error | no-any | use a concrete type",
        "- 17 | no-var | use let",
        "- src/a.ts:3 | warning | no-console | remove the log",
    ]
)


def _processor(settings, gitlab_stub: GitLabStub, completion_stub: CompletionStub) -> ReviewProcessor:
    return ReviewProcessor(
        settings,
        gitlab_client=GitLabClient(
            base_url=settings.normalized_gitlab_api_url, token="t", client=gitlab_stub.client()
        ),
        completion_client=CompletionClient("k", model="gpt-4o", client=completion_stub.client()),
    )


class TestReviewSkipReason:
    def test_open_and_update_on_target_branch_are_reviewed(self, merge_request_payload):
        for action in ("open", "update"):
            event = MergeRequestEvent.model_validate(merge_request_payload(action=action))
            assert review_skip_reason(event, ["master", "main"]) is None

    def test_other_actions_are_skipped(self, merge_request_payload):
        event = MergeRequestEvent.model_validate(merge_request_payload(action="merge"))

        assert "not actionable" in review_skip_reason(event, ["main"])

    def test_other_target_branches_are_skipped(self, merge_request_payload):
        event = MergeRequestEvent.model_validate(merge_request_payload(target_branch="develop"))

        assert "develop" in review_skip_reason(event, ["master", "main"])


class TestReviewProcessor:
    def test_full_review_publishes_summary_and_inline_errors(self, settings, gitlab_stub):
        completion_stub = CompletionStub([REPLY])

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert result.summary.total == 3
        assert result.summary.counts.errors == 2
        assert result.summary.counts.warnings == 1
        assert result.inline_posted == 2
        assert len(completion_stub.bodies) == 1
        note = gitlab_stub.notes[0]["body"]
        assert "Found 3 issue(s) in total:" in note
        assert "| src/b.ts | 17 | ❌ Error | no-var | use let |" in note
        assert [(d["position"]["new_path"], d["position"]["new_line"]) for d in gitlab_stub.discussions] == [
            ("src/a.ts", 2),
            ("src/b.ts", 17),
        ]

    def test_standards_reach_the_completion_service(self, settings, gitlab_stub):
        completion_stub = CompletionStub()

        asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        system_message = completion_stub.bodies[0]["messages"][0]["content"]
        assert "[no-any] Do not use any." in system_message

    def test_clean_reply_posts_passed_note_only(self, settings, gitlab_stub):
        completion_stub = CompletionStub(["未发现Bug"])

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert result.summary.total == 0
        assert result.inline_posted == 0
        assert gitlab_stub.notes == [{"body": PASSED_MESSAGE}]
        assert gitlab_stub.discussions == []

    def test_unparseable_reply_is_not_fatal(self, settings, gitlab_stub):
        completion_stub = CompletionStub(['{"verdict": "fine"}'])

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert result.summary.total == 0
        assert gitlab_stub.notes == [{"body": PASSED_MESSAGE}]

    def test_no_reviewable_files_skips_completion(self, settings):
        gitlab_stub = GitLabStub(changes=[change_entry("README.md", DIFF_A)])
        completion_stub = CompletionStub()

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert completion_stub.bodies == []
        assert result.summary.total == 0
        assert gitlab_stub.notes == [{"body": PASSED_MESSAGE}]

    def test_batches_are_sent_one_file_at_a_time(self, settings, gitlab_stub):
        completion_stub = CompletionStub(["- src/a.ts:2 | error | no-any | fix", "- 17 | no-var | use let"])
        settings = settings.model_copy(update={"batch_size": 1})

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        prompts = [body["messages"][1]["content"] for body in completion_stub.bodies]
        assert len(prompts) == 2
        assert "File: src/a.ts" in prompts[0] and "src/b.ts" not in prompts[0]
        assert "File: src/b.ts" in prompts[1]
        assert [(f.file, f.line) for f in result.summary.findings] == [("src/a.ts", 2), ("src/b.ts", 17)]

    def test_inline_limit_is_configurable(self, settings, gitlab_stub):
        completion_stub = CompletionStub([REPLY])
        settings = settings.model_copy(update={"max_inline_comments": 1})

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert result.inline_posted == 1
        assert len(gitlab_stub.discussions) == 1

    def test_missing_credentials_fail_before_any_request(self, settings, gitlab_stub, completion_stub):
        settings = settings.model_copy(update={"ai_api_key": None})

        with pytest.raises(ConfigurationError, match="AI_API_KEY"):
            asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert gitlab_stub.requests == []

    def test_unreadable_standards_fail_before_any_request(self, settings, gitlab_stub, completion_stub, tmp_path):
        settings = settings.model_copy(update={"standards_path": tmp_path / "missing.md"})

        with pytest.raises(ConfigurationError):
            asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert gitlab_stub.requests == []

    def test_change_fetch_failure_is_fatal(self, settings, gitlab_stub, completion_stub):
        gitlab_stub.changes_status = 404

        with pytest.raises(ReviewProcessorError) as excinfo:
            asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert excinfo.value.step == "fetch_changes"
        assert excinfo.value.original_error.status_code == 404

    def test_completion_failure_is_fatal_and_publishes_nothing(self, settings, gitlab_stub):
        completion_stub = CompletionStub(status_code=500)

        with pytest.raises(ReviewProcessorError) as excinfo:
            asyncio.run(_processor(settings, gitlab_stub, completion_stub).review(UNIT))

        assert excinfo.value.step == "review_batch"
        assert gitlab_stub.notes == []

    def test_skipped_event_makes_no_requests(self, settings, gitlab_stub, completion_stub, merge_request_payload):
        event = MergeRequestEvent.model_validate(merge_request_payload(action="close"))

        result = asyncio.run(_processor(settings, gitlab_stub, completion_stub).handle_event(event))

        assert result is None
        assert gitlab_stub.requests == []
