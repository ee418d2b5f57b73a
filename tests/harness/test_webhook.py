"""Unit and property tests for webhook trigger parsing."""

from hypothesis import given, settings, strategies as st

from src.harness.webhook import AuthorAssociation, TriggerKind, WebhookHandler


def comment_payload(
    body="@fro-bot please fix the tests",
    login="octocat",
    association="MEMBER",
    action="created",
    pull_request=False,
):
    issue = {"number": 42, "title": "Tests are failing", "user": {"login": "reporter"}}
    if pull_request:
        issue["pull_request"] = {"url": "https://api.github.com/repos/acme/app/pulls/42"}
    return {
        "action": action,
        "issue": issue,
        "comment": {
            "id": 1001,
            "body": body,
            "user": {"login": login},
            "author_association": association,
        },
        "repository": {"name": "app", "owner": {"login": "acme"}},
    }


def issue_payload(body="@fro-bot triage this", association="OWNER", action="opened"):
    return {
        "action": action,
        "issue": {
            "number": 7,
            "title": " Crash on start ",
            "body": body,
            "user": {"login": "maintainer"},
            "author_association": association,
        },
        "repository": {"name": "app", "owner": {"login": "acme"}},
    }


handler = WebhookHandler("@fro-bot", bot_login="fro-bot")


class TestIssueComment:
    def test_trigger_comment_is_parsed(self):
        event = handler.parse_event("issue_comment", comment_payload())

        assert event.kind is TriggerKind.ISSUE_COMMENT
        assert event.target_id == "acme/app#42"
        assert event.full_repository == "acme/app"
        assert event.comment_id == 1001
        assert event.author == "octocat"
        assert event.author_association is AuthorAssociation.MEMBER
        assert not event.is_pull_request

    def test_pull_request_comment(self):
        event = handler.parse_event("issue_comment", comment_payload(pull_request=True))
        assert event.is_pull_request

    def test_trigger_phrase_is_case_insensitive(self):
        assert handler.parse_event("issue_comment", comment_payload(body="@Fro-Bot go")) is not None

    def test_comment_without_trigger_is_ignored(self):
        assert handler.parse_event("issue_comment", comment_payload(body="lgtm")) is None

    def test_untrusted_author_is_ignored(self):
        for association in ("CONTRIBUTOR", "NONE", "FIRST_TIME_CONTRIBUTOR", None):
            payload = comment_payload(association=association)
            assert handler.parse_event("issue_comment", payload) is None

    def test_bot_comments_are_ignored(self):
        assert handler.parse_event("issue_comment", comment_payload(login="FRO-BOT")) is None

    def test_edited_comment_is_ignored(self):
        assert handler.parse_event("issue_comment", comment_payload(action="edited")) is None


class TestIssuesOpened:
    def test_opened_issue_is_parsed(self):
        event = handler.parse_event("issues", issue_payload())

        assert event.kind is TriggerKind.ISSUE_OPENED
        assert event.issue_number == 7
        assert event.title == "Crash on start"
        assert event.comment_id is None

    def test_closed_issue_is_ignored(self):
        assert handler.parse_event("issues", issue_payload(action="closed")) is None


class TestMalformedPayloads:
    def test_unsupported_event_type(self):
        assert handler.parse_event("push", comment_payload()) is None

    def test_non_dict_payload(self):
        assert handler.parse_event("issue_comment", ["not", "a", "dict"]) is None

    def test_missing_repository(self):
        payload = comment_payload()
        del payload["repository"]
        assert handler.parse_event("issue_comment", payload) is None

    def test_invalid_issue_number(self):
        payload = comment_payload()
        payload["issue"]["number"] = "42"
        assert handler.parse_event("issue_comment", payload) is None


class TestProperties:
    @settings(max_examples=100)
    @given(
        association=st.sampled_from(["OWNER", "MEMBER", "COLLABORATOR"]),
        number=st.integers(min_value=1, max_value=10**6),
        prefix=st.text(max_size=30),
    )
    def test_trusted_mentions_always_trigger(self, association, number, prefix):
        payload = comment_payload(body=f"{prefix} @fro-bot do it", association=association)
        payload["issue"]["number"] = number

        event = handler.parse_event("issue_comment", payload)

        assert event is not None
        assert event.target_id == f"acme/app#{number}"
