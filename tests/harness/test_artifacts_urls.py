"""Unit tests for prompt artifacts and GitHub URL extraction."""

from src.harness.agent.artifacts import PromptArtifactSink, prompt_artifact_name
from src.harness.github.urls import extract_commit_shas, extract_github_urls, is_github_url


class TestPromptArtifacts:
    def test_name_uses_session_and_hash_prefix(self):
        name = prompt_artifact_name("ses_1", "hello")
        # sha256("hello") = 2cf24dba...
        assert name == "prompt-ses_1-2cf24dba.txt"

    def test_write_creates_directory(self, tmp_path):
        sink = PromptArtifactSink(str(tmp_path / "logs"))

        path = sink.write("ses_1", "prompt text")

        assert path.read_text() == "prompt text"
        assert path.parent == tmp_path / "logs"

    def test_write_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        assert PromptArtifactSink(str(blocker)).write("ses_1", "x") is None

    def test_unencodable_prompt_returns_none(self, tmp_path):
        sink = PromptArtifactSink(str(tmp_path))

        assert sink.write("ses_1", "fix \ud83d please") is None
        assert list(tmp_path.iterdir()) == []


class TestGitHubUrls:
    def test_is_github_url(self):
        assert is_github_url("https://github.com/acme/app")
        assert is_github_url("https://api.github.com/repos/acme/app")
        assert not is_github_url("https://github.com.evil.example/acme/app")
        assert not is_github_url("https://notgithub.com/acme/app")

    def test_extract_urls_in_order_without_duplicates(self):
        text = (
            "see https://github.com/acme/app/pull/3 and https://github.com/acme/app/issues/4"
            " and https://github.com/acme/app/pull/3 and https://github.com/acme/app/issues/4#issuecomment-55"
        )

        assert extract_github_urls(text) == [
            "https://github.com/acme/app/pull/3",
            "https://github.com/acme/app/issues/4",
            "https://github.com/acme/app/issues/4#issuecomment-55",
        ]

    def test_extract_commit_shas(self):
        output = "[main 1234567] first\n[feature/x abcdef0] nope\n[fix-1 0123456789abcdef] second\n[main 1234567] again"

        assert extract_commit_shas(output) == ["1234567", "0123456789abcdef"]
