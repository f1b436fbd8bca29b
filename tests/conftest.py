import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from mr_reviewer.config import Settings
from mr_reviewer.diff_parser import build_change_set


DIFF_A = (
    "@@ -1,3 +1,4 @@\n"
    " import { x } from './x';\n"
    "-let value: any = x;\n"
    "+const value: any = x;\n"
    "+console.log(value);\n"
    " export default value;\n"
)

DIFF_B = (
    "@@ -10,2 +15,4 @@\n"
    " const a = 1;\n"
    "+let b = 2;\n"
    "+var c = 3;\n"
    " export { a };\n"
)


def change_entry(new_path: str, diff: str, **flags: Any) -> Dict[str, Any]:
    entry = {
        "old_path": flags.pop("old_path", new_path),
        "new_path": new_path,
        "diff": diff,
        "new_file": False,
        "renamed_file": False,
        "deleted_file": False,
    }
    entry.update(flags)
    return entry


@pytest.fixture
def change_set():
    return build_change_set(
        [
            change_entry("src/a.ts", DIFF_A),
            change_entry("src/b.ts", DIFF_B),
        ]
    )


@pytest.fixture
def standards_file(tmp_path):
    path = tmp_path / "coding-standards.md"
    path.write_text("- [no-any] Do not use any.\n- [no-var] Never use var.\n", encoding="utf-8")
    return path


@pytest.fixture
def settings(standards_file):
    return Settings(
        gitlab_url="https://gitlab.example.com",
        gitlab_token="glpat-test",
        webhook_secret="hook-secret",
        ai_api_key="sk-test",
        standards_path=standards_file,
    )


@pytest.fixture
def merge_request_payload() -> Callable[..., Dict[str, Any]]:
    def _factory(*, action: str = "open", target_branch: str = "main", iid: int = 7) -> Dict[str, Any]:
        return {
            "object_kind": "merge_request",
            "event_type": "merge_request",
            "user": {"username": "dev"},
            "project": {
                "id": 42,
                "name": "web",
                "path_with_namespace": "team/web",
                "web_url": "https://gitlab.example.com/team/web",
                "default_branch": "main",
            },
            "object_attributes": {
                "id": 1000 + iid,
                "iid": iid,
                "title": "Add widget",
                "state": "opened",
                "action": action,
                "source_branch": "feature/widget",
                "target_branch": target_branch,
                "url": f"https://gitlab.example.com/team/web/-/merge_requests/{iid}",
            },
        }

    return _factory


class GitLabStub:
    """Records GitLab API calls and serves canned merge request data."""

    def __init__(self, changes: List[Dict[str, Any]] | None = None) -> None:
        self.changes = changes if changes is not None else [
            change_entry("src/a.ts", DIFF_A),
            change_entry("src/b.ts", DIFF_B),
        ]
        self.diff_refs = {"base_sha": "base", "start_sha": "start", "head_sha": "head"}
        self.notes: List[Dict[str, Any]] = []
        self.discussions: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.fail_discussions: set[int] = set()
        self.discussion_attempts = 0
        self.changes_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.endswith("/changes"):
            if self.changes_status != 200:
                return httpx.Response(self.changes_status, json={"message": "error"})
            return httpx.Response(200, json={"changes": self.changes})
        if request.method == "GET" and "/merge_requests/" in path:
            return httpx.Response(200, json={"iid": 7, "diff_refs": self.diff_refs})
        if request.method == "POST" and path.endswith("/notes"):
            self.notes.append(json.loads(request.content))
            return httpx.Response(201, json={"id": len(self.notes)})
        if request.method == "POST" and path.endswith("/discussions"):
            attempt = self.discussion_attempts
            self.discussion_attempts += 1
            if attempt in self.fail_discussions:
                return httpx.Response(400, json={"message": "line_code can't be blank"})
            self.discussions.append(json.loads(request.content))
            return httpx.Response(201, json={"id": str(len(self.discussions))})
        return httpx.Response(404, json={"message": "404 Not Found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="https://gitlab.example.com/api/v4",
        )


class CompletionStub:
    """Serves scripted chat-completion replies in order."""

    def __init__(self, replies: List[str] | None = None, status_code: int = 200) -> None:
        self.replies = list(replies or [])
        self.status_code = status_code
        self.bodies: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "boom"}})
        content = self.replies.pop(0) if self.replies else "No issues found"
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": content}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
            },
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="https://ai.example.com/v1",
        )


@pytest.fixture
def gitlab_stub():
    return GitLabStub()


@pytest.fixture
def completion_stub():
    return CompletionStub()
