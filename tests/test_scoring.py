"""Tests for leaderboard computation."""

import pytest

from tests.conftest import entry_names, make_categories, make_groups, make_votes

from pitchnight.scoring import compute_leaderboard, is_complete, leaderboard_csv_rows


class TestGroupAggregates:
    def setup_method(self):
        self.categories = make_categories("C1", "C2")
        self.groups = make_groups("G")

    def test_two_complete_votes(self):
        """V1={C1:5,C2:3}, V2={C1:4,C2:4} → total 16, average 8, C1 4.5, C2 3.5."""
        votes = make_votes({"G": [{"C1": 5, "C2": 3}, {"C1": 4, "C2": 4}]}, self.groups, self.categories)
        entry = compute_leaderboard(self.groups, self.categories, votes).entries[0]
        assert entry.total_score == 16
        assert entry.average_score == 8
        assert entry.vote_count == 2
        assert entry.category_average(1) == 4.5
        assert entry.category_average(2) == 3.5

    def test_category_breakdown_follows_category_order(self):
        votes = make_votes({"G": [{"C1": 2, "C2": 5}]}, self.groups, self.categories)
        entry = compute_leaderboard(self.groups, self.categories, votes).entries[0]
        assert [cs.category_name for cs in entry.category_scores] == ["C1", "C2"]
        assert [cs.total_stars for cs in entry.category_scores] == [2, 5]

    def test_incomplete_vote_excluded_everywhere(self):
        """A vote with only C1 rated is not counted, not even for C1's average."""
        votes = make_votes({"G": [{"C1": 5, "C2": 3}, {"C1": 1}]}, self.groups, self.categories)
        entry = compute_leaderboard(self.groups, self.categories, votes).entries[0]
        assert entry.total_score == 8
        assert entry.vote_count == 1
        assert entry.category_average(1) == 5
        assert entry.category_scores[0].vote_count == 1

    def test_no_votes_scores_zero(self):
        entry = compute_leaderboard(self.groups, self.categories, []).entries[0]
        assert entry.total_score == 0
        assert entry.average_score == 0
        assert entry.vote_count == 0
        assert entry.category_average(1) == 0

    def test_is_complete(self):
        votes = make_votes({"G": [{"C1": 5, "C2": 3}, {"C2": 3}]}, self.groups, self.categories)
        assert is_complete(votes[0], [1, 2])
        assert not is_complete(votes[1], [1, 2])


class TestRanking:
    def setup_method(self):
        self.categories = make_categories("C1")
        self.groups = make_groups("A", "B", "C", "D")

    def test_sorted_by_total_score(self):
        votes = make_votes({
            "A": [{"C1": 2}],
            "B": [{"C1": 5}],
            "C": [{"C1": 3}],
        }, self.groups, self.categories)
        result = compute_leaderboard(self.groups, self.categories, votes)
        assert entry_names(result) == ["B", "C", "A", "D"]
        assert [e.rank for e in result.entries] == [1, 2, 3, 4]

    def test_tie_broken_by_vote_count(self):
        """Equal totals: the group with more complete votes ranks first."""
        votes = make_votes({
            "A": [{"C1": 5}, {"C1": 5}],
            "B": [{"C1": 4}, {"C1": 3}, {"C1": 3}],
        }, self.groups[:2], self.categories)
        result = compute_leaderboard(self.groups[:2], self.categories, votes)
        assert entry_names(result) == ["B", "A"]
        assert result.entries[0].total_score == result.entries[1].total_score == 10
        assert not result.entries[0].tied

    def test_genuine_tie_shares_rank(self):
        votes = make_votes({
            "A": [{"C1": 4}],
            "B": [{"C1": 4}],
            "C": [{"C1": 2}],
        }, self.groups[:3], self.categories)
        result = compute_leaderboard(self.groups[:3], self.categories, votes)
        assert [e.rank for e in result.entries] == [1, 1, 3]
        assert [e.tied for e in result.entries] == [True, True, False]
        # equal entries keep lineup order
        assert entry_names(result)[:2] == ["A", "B"]


class TestPodium:
    def setup_method(self):
        self.categories = make_categories("C1")

    def test_three_tiers(self):
        groups = make_groups("A", "B", "C", "D")
        votes = make_votes({
            "A": [{"C1": 5}],
            "B": [{"C1": 4}],
            "C": [{"C1": 3}],
            "D": [{"C1": 2}],
        }, groups, self.categories)
        podium = compute_leaderboard(groups, self.categories, votes).podium
        assert [e.group.name for e in podium["first"]] == ["A"]
        assert [e.group.name for e in podium["second"]] == ["B"]
        assert [e.group.name for e in podium["third"]] == ["C"]

    def test_tied_groups_share_a_tier(self):
        """Both groups tied on total and vote count land on the same tier."""
        groups = make_groups("A", "B", "C")
        votes = make_votes({
            "A": [{"C1": 5}],
            "B": [{"C1": 5}],
            "C": [{"C1": 1}],
        }, groups, self.categories)
        podium = compute_leaderboard(groups, self.categories, votes).podium
        assert {e.group.name for e in podium["first"]} == {"A", "B"}
        assert [e.group.name for e in podium["second"]] == ["C"]
        assert podium["third"] == []

    def test_tier_is_by_total_score_only(self):
        groups = make_groups("A", "B")
        votes = make_votes({
            "A": [{"C1": 5}, {"C1": 1}],
            "B": [{"C1": 3}, {"C1": 2}, {"C1": 1}],
        }, groups, self.categories)
        podium = compute_leaderboard(groups, self.categories, votes).podium
        assert [e.group.name for e in podium["first"]] == ["B", "A"]

    def test_multi_way_tie_pushes_next_score_to_second(self):
        groups = make_groups("A", "B", "C", "D", "E")
        votes = make_votes({
            "A": [{"C1": 5}],
            "B": [{"C1": 5}],
            "C": [{"C1": 5}],
            "D": [{"C1": 4}],
            "E": [{"C1": 3}],
        }, groups, self.categories)
        podium = compute_leaderboard(groups, self.categories, votes).podium
        assert len(podium["first"]) == 3
        assert [e.group.name for e in podium["second"]] == ["D"]
        assert [e.group.name for e in podium["third"]] == ["E"]

    def test_empty_lineup(self):
        result = compute_leaderboard([], self.categories, [])
        assert result.entries == []
        assert result.podium == {"first": [], "second": [], "third": []}
        assert result.category_winners[0].winners == []


class TestCategoryWinners:
    def setup_method(self):
        self.categories = make_categories("Idea", "Delivery")
        self.groups = make_groups("A", "B")

    def test_single_winner_per_category(self):
        votes = make_votes({
            "A": [{"Idea": 5, "Delivery": 2}],
            "B": [{"Idea": 3, "Delivery": 4}],
        }, self.groups, self.categories)
        winners = compute_leaderboard(self.groups, self.categories, votes).category_winners
        assert [w.category.name for w in winners] == ["Idea", "Delivery"]
        assert [g.group.name for g in winners[0].winners] == ["A"]
        assert [g.group.name for g in winners[1].winners] == ["B"]
        assert not winners[0].is_tie

    def test_tie_for_category(self):
        votes = make_votes({
            "A": [{"Idea": 4, "Delivery": 2}],
            "B": [{"Idea": 4, "Delivery": 1}],
        }, self.groups, self.categories)
        idea = compute_leaderboard(self.groups, self.categories, votes).category_winners[0]
        assert idea.is_tie
        assert {g.group.name for g in idea.winners} == {"A", "B"}

    def test_to_dict_shape(self):
        votes = make_votes({"A": [{"Idea": 4, "Delivery": 2}]}, self.groups, self.categories)
        data = compute_leaderboard(self.groups, self.categories, votes).to_dict()
        assert set(data) == {"full_leaderboard", "podium", "category_winners"}
        assert data["category_winners"][0]["winners"] == [{"group_id": 1, "group_name": "A", "score": 4}]
        assert data["full_leaderboard"][0]["group_name"] == "A"


def test_csv_rows():
    categories = make_categories("Idea", "Delivery")
    groups = make_groups("A", "B")
    votes = make_votes({"A": [{"Idea": 4, "Delivery": 2}], "B": [{"Idea": 5, "Delivery": 5}]}, groups, categories)
    rows = leaderboard_csv_rows(compute_leaderboard(groups, categories, votes), categories)
    assert rows[0] == ["rank", "group", "total", "average", "votes", "Idea", "Delivery"]
    assert rows[1] == ["1", "B", "10", "10.00", "1", "5.00", "5.00"]
    assert rows[2] == ["2", "A", "6", "6.00", "1", "4.00", "2.00"]


@pytest.mark.parametrize("stars,expected_total", [(1, 2), (3, 6), (5, 10)])
def test_total_is_sum_of_all_stars(stars, expected_total):
    categories = make_categories("C1", "C2")
    groups = make_groups("G")
    votes = make_votes({"G": [{"C1": stars, "C2": stars}]}, groups, categories)
    assert compute_leaderboard(groups, categories, votes).entries[0].total_score == expected_total
