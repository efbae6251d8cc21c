"""Unit tests for backend payload parsing and wire-format normalization."""

import pytest
from pydantic import ValidationError

from evote_client.lib.backend.parser import (
    parse_election_status,
    parse_positions,
    parse_results,
    parse_settings,
    parse_submit_response,
    parse_validate_response,
)
from tests.conftest import voter_json


class TestParseElectionStatus:
    """Tests for parse_election_status()."""

    def test_voting_fields(self) -> None:
        payload = parse_election_status(
            {
                "_id": "e1",
                "isActive": True,
                "votingStartDate": "2025-05-17T00:00:00.000Z",
                "votingEndDate": "2025-05-18",
                "votingStartTime": "08:00",
                "votingEndTime": "17:00",
            }
        )
        assert payload.id == "e1"
        assert payload.start_date == "2025-05-17"
        assert payload.end_date == "2025-05-18"
        assert payload.start_time == "08:00"

    def test_legacy_fields_resolved(self) -> None:
        """Older deployments send startDate/startTime or a single date."""
        payload = parse_election_status({"date": "2025-05-17", "startTime": "09:00", "endTime": "15:00"})
        assert payload.start_date == "2025-05-17"
        assert payload.end_date == "2025-05-17"
        assert payload.start_time == "09:00"
        assert payload.end_time == "15:00"

    def test_nulls_coerced(self) -> None:
        payload = parse_election_status({"title": None, "votingStartTime": None, "isActive": None})
        assert payload.title == ""
        assert payload.start_time == ""
        assert payload.isActive is False

    def test_string_flags_parsed(self) -> None:
        payload = parse_election_status({"isActive": "false", "resultsPublished": "true"})
        assert payload.isActive is False
        assert payload.resultsPublished is True


class TestParseValidateResponse:
    """Tests for parse_validate_response() and voter normalization."""

    def test_success(self) -> None:
        response = parse_validate_response({"success": True, "voter": voter_json(maxVotes=2)})
        assert response.voter.id == "VOTER001"
        assert response.voter.max_votes == 2
        assert response.voter.vote_tokens == ()

    def test_voter_code_preferred_over_database_id(self) -> None:
        response = parse_validate_response(
            {"success": True, "voter": {"id": "64f0c0ffee", "voterId": "VOTER001", "name": "Kofi"}}
        )
        assert response.voter.id == "VOTER001"

    def test_single_token_promoted_to_list(self) -> None:
        response = parse_validate_response(
            {
                "success": False,
                "errorCode": "ALREADY_VOTED",
                "voter": voter_json(hasVoted=True, voteToken="TOKEN-1", votedAt="2025-05-17T09:15:00Z"),
            }
        )
        voter = response.voter
        assert [t.token for t in voter.vote_tokens] == ["TOKEN-1"]
        assert voter.last_token.timestamp.hour == 9

    def test_has_voted_implies_a_counted_vote(self) -> None:
        """Legacy records with hasVoted but no count are counted as one vote."""
        response = parse_validate_response({"success": True, "voter": voter_json(hasVoted=True, voteCount=None)})
        assert response.voter.vote_count == 1

    def test_null_message(self) -> None:
        assert parse_validate_response({"success": False, "message": None}).message == ""

    def test_negative_vote_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_validate_response({"success": True, "voter": voter_json(voteCount=-1)})


class TestParseSubmitResponse:
    """Tests for parse_submit_response()."""

    def test_token_and_timestamp(self) -> None:
        response = parse_submit_response(
            {"success": True, "voteToken": "TOKEN-2", "timestamp": "2025-05-17T10:00:00Z"}
        )
        assert response.voteToken == "TOKEN-2"
        assert response.timestamp.minute == 0


class TestParseResults:
    """Tests for parse_results()."""

    def test_nested_candidate_shape(self) -> None:
        payload = parse_results(
            {
                "results": [
                    {
                        "position": {"_id": "p1", "title": "President", "priority": 1},
                        "candidates": [
                            {"candidate": {"_id": "c1", "name": "Ama"}, "voteCount": 10, "percentage": 50},
                            {"candidate": {"_id": "c2", "name": "None", "isAbstention": True}, "voteCount": 2},
                        ],
                        "totalVotes": 20,
                    }
                ],
                "stats": {"total": 100, "voted": 20, "notVoted": 80, "percentage": 20},
            }
        )
        item = payload.results[0]
        assert item.position.id == "p1"
        assert item.total_votes == 20
        assert item.candidates[0].candidate_id == "c1"
        assert item.candidates[0].percentage == 50
        assert item.candidates[1].is_abstention is True
        assert item.candidates[1].percentage is None
        assert payload.stats.not_voted == 80

    def test_missing_fields_default(self) -> None:
        payload = parse_results({"results": None, "stats": None})
        assert payload.results == []
        assert payload.stats.percentage == 0.0

    def test_null_priority_and_counts(self) -> None:
        payload = parse_results(
            {
                "results": [
                    {
                        "position": {"_id": "p1", "title": "Treasurer", "priority": None},
                        "candidates": [{"candidateId": "c1", "name": None, "voteCount": None}],
                        "totalVotes": None,
                    }
                ]
            }
        )
        item = payload.results[0]
        assert item.position.priority == 0
        assert item.total_votes == 0
        assert item.candidates[0].vote_count == 0
        assert item.candidates[0].name == ""


class TestParsePositionsAndSettings:
    """Tests for parse_positions() and parse_settings()."""

    def test_positions(self) -> None:
        positions = parse_positions([{"_id": "p1", "title": "President", "maxVotes": 0, "isActive": False}])
        assert positions[0].max_votes == 1
        assert positions[0].is_active is False

    def test_settings_defaults(self) -> None:
        settings = parse_settings({"votingStartTime": "", "maxVotesPerVoter": 0, "electionTitle": None})
        assert settings.voting_start_time == "08:00"
        assert settings.voting_end_time == "16:00"
        assert settings.max_votes_per_voter == 1
        assert settings.election_title == "Student Council Election"

    def test_settings_display_name(self) -> None:
        assert parse_settings({"systemName": "eVote", "companyName": "Achimota"}).display_name == "Achimota"
        assert parse_settings({"systemName": "eVote"}).display_name == "eVote"
