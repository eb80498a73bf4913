"""Tests for IdentityMatcher participation detection."""

import pytest

from career_stories.models import Persona
from career_stories.services.identity_matcher import (
    CONTRIBUTOR,
    INITIATOR,
    MENTIONED,
    OBSERVER,
    IdentityMatcher,
    ParticipationResult,
    summarize,
)


@pytest.fixture
def persona():
    return Persona(
        display_name="Ada",
        emails=["Ada@Acme.test"],
        identities={
            "github": {"login": "ada-l"},
            "jira": {"accountId": "5f1a", "displayName": "Ada Lovelace"},
            "slack": {"userId": "U123"},
        },
    )


@pytest.fixture
def matcher(persona):
    return IdentityMatcher(persona)


class TestDetect:
    @pytest.mark.parametrize(
        "source,raw_data,level,signals",
        [
            ("jira", {"assignee": "5f1a"}, INITIATOR, ["jira-assignee"]),
            ("jira", {"reporter": "ada@acme.test"}, INITIATOR, ["jira-reporter"]),
            ("jira", {"watchers": ["bob", "Ada Lovelace"]}, OBSERVER, ["jira-watcher"]),
            ("jira", {"mentions": ["5f1a"], "watchers": ["5f1a"]}, MENTIONED, ["jira-watcher", "jira-mentioned"]),
            ("github", {"author": "ADA-L"}, INITIATOR, ["github-author"]),
            ("github", {"requestedReviewers": ["ada-l"]}, CONTRIBUTOR, ["github-reviewer"]),
            ("confluence", {"creator": "ada@acme.test"}, INITIATOR, ["confluence-creator"]),
            ("confluence", {"lastModifiedBy": "ada@acme.test"}, CONTRIBUTOR, ["confluence-editor"]),
            ("google", {"organizer": "someone@acme.test", "attendees": ["ada@acme.test"]}, OBSERVER, ["google-attendee"]),
        ],
    )
    def test_levels(self, matcher, make_activity, source, raw_data, level, signals):
        result = matcher.detect(make_activity("a", source=source, raw_data=raw_data))

        assert result.level == level
        assert result.signals == signals

    def test_heaviest_signal_wins(self, matcher, make_activity):
        activity = make_activity(
            "a", source="jira", raw_data={"watchers": ["5f1a"], "reporter": "5f1a", "assignee": "5f1a"}
        )

        result = matcher.detect(activity)

        assert result.level == INITIATOR
        assert set(result.signals) == {"jira-assignee", "jira-reporter", "jira-watcher"}

    def test_nested_person_objects(self, matcher, make_activity):
        activity = make_activity(
            "a", source="jira", raw_data={"assignee": {"accountId": "5f1a", "active": True}}
        )

        assert matcher.detect(activity).level == INITIATOR

    def test_slack_reply_adds_replier(self, matcher, make_activity):
        activity = make_activity("a", source="slack", raw_data={"author": "U123", "isReply": True})

        assert matcher.detect(activity).signals == ["slack-author", "slack-replier"]

    def test_identity_scoped_to_tool(self, matcher, make_activity):
        """A GitHub login does not match a Jira field."""
        activity = make_activity("a", source="jira", raw_data={"assignee": "ada-l"})

        assert matcher.detect(activity).level == OBSERVER

    @pytest.mark.parametrize("raw_data", [None, {}, {"assignee": None}, {"assignee": ""}])
    def test_no_signal_is_observer(self, matcher, make_activity, raw_data):
        result = matcher.detect(make_activity("a", source="jira", raw_data=raw_data))

        assert result == ParticipationResult(activity_id="a", level=OBSERVER, signals=[])

    def test_unknown_source(self, matcher, make_activity):
        activity = make_activity("a", source="notion", raw_data={"author": "ada@acme.test"})

        assert matcher.detect(activity).level == OBSERVER


class TestHasIdentities:
    def test_empty_persona(self):
        assert not IdentityMatcher(Persona(display_name="Ada")).has_identities

    def test_blank_values_ignored(self):
        persona = Persona(emails=["  "], identities={"github": {"login": ""}})
        assert not IdentityMatcher(persona).has_identities

    def test_email_only(self):
        assert IdentityMatcher(Persona(emails=["ada@acme.test"])).has_identities


class TestSummarize:
    def test_counts_and_ratio(self):
        results = [
            ParticipationResult("a", INITIATOR),
            ParticipationResult("b", OBSERVER),
            ParticipationResult("c", OBSERVER),
            ParticipationResult("d", CONTRIBUTOR),
        ]

        summary = summarize(results)

        assert summary.to_dict() == {"initiator": 1, "contributor": 1, "mentioned": 0, "observer": 2}
        assert summary.observer_ratio == 0.5

    def test_empty(self):
        assert summarize([]).observer_ratio == 0.0
