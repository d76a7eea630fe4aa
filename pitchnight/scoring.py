"""
排行榜计算

除 load_leaderboard 外均为纯函数：输入阵容、类别与投票，输出排名。
只统计完整投票（评完所有当前类别）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .storage import Category, Group, Vote, fetch_categories, fetch_event, fetch_lineup, fetch_votes, get_conn

PODIUM_TIERS = ("first", "second", "third")


@dataclass
class CategoryScore:
    """某组在某一类别上的统计（仅完整投票）"""
    category_id: int
    category_name: str
    average_stars: float
    total_stars: int
    vote_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "average_stars": self.average_stars,
            "total_stars": self.total_stars,
            "vote_count": self.vote_count,
        }


@dataclass
class GroupScore:
    """
    组别得分与名次

    total_score 为所有完整投票的星级总和，average_score = total_score / 完整投票数。
    总分与票数都相同的组共享名次（tied=True）。
    """
    group: Group
    total_score: int
    average_score: float
    vote_count: int
    category_scores: List[CategoryScore]
    rank: int = 0
    tied: bool = False

    def category_average(self, category_id: int) -> float:
        for cs in self.category_scores:
            if cs.category_id == category_id:
                return cs.average_stars
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tied": self.tied,
            "group_id": self.group.id,
            "group_name": self.group.name,
            "total_score": self.total_score,
            "average_score": self.average_score,
            "vote_count": self.vote_count,
            "category_scores": [cs.to_dict() for cs in self.category_scores],
        }


@dataclass
class CategoryWinner:
    category: Category
    winners: List[GroupScore]

    @property
    def is_tie(self) -> bool:
        return len(self.winners) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.to_dict(),
            "winners": [
                {"group_id": w.group.id, "group_name": w.group.name, "score": w.category_average(self.category.id)}
                for w in self.winners
            ],
            "is_tie": self.is_tie,
        }


@dataclass
class Leaderboard:
    """排行榜：entries 由高到低，podium 为前三档，category_winners 按类别顺序"""
    entries: List[GroupScore]
    podium: Dict[str, List[GroupScore]] = field(default_factory=dict)
    category_winners: List[CategoryWinner] = field(default_factory=list)

    def get_entry(self, group_id: int) -> Optional[GroupScore]:
        for entry in self.entries:
            if entry.group.id == group_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_leaderboard": [e.to_dict() for e in self.entries],
            "podium": {tier: [e.to_dict() for e in self.podium.get(tier, [])] for tier in PODIUM_TIERS},
            "category_winners": [cw.to_dict() for cw in self.category_winners],
        }


def is_complete(vote: Vote, category_ids: Iterable[int]) -> bool:
    """投票是否评完了所有当前类别"""
    return all(cid in vote.ratings for cid in category_ids)


def score_group(group: Group, votes: Sequence[Vote], categories: Sequence[Category]) -> GroupScore:
    """汇总某组的完整投票"""
    category_ids = [c.id for c in categories]
    complete = [v for v in votes if v.group_id == group.id and is_complete(v, category_ids)]

    total = sum(v.ratings[cid] for v in complete for cid in category_ids)
    average = total / len(complete) if complete else 0

    category_scores = []
    for category in categories:
        stars = [v.ratings[category.id] for v in complete]
        category_scores.append(CategoryScore(
            category_id=category.id,
            category_name=category.name,
            average_stars=sum(stars) / len(stars) if stars else 0,
            total_stars=sum(stars),
            vote_count=len(stars),
        ))

    return GroupScore(
        group=group,
        total_score=total,
        average_score=average,
        vote_count=len(complete),
        category_scores=category_scores,
    )


def _assign_ranks(ordered: List[GroupScore]) -> None:
    """按（总分, 票数）排名，并列共享名次：1, 1, 3"""
    for i, entry in enumerate(ordered):
        key = (entry.total_score, entry.vote_count)
        if i > 0 and key == (ordered[i - 1].total_score, ordered[i - 1].vote_count):
            entry.rank = ordered[i - 1].rank
            entry.tied = True
            ordered[i - 1].tied = True
        else:
            entry.rank = i + 1


def build_podium(ordered: List[GroupScore]) -> Dict[str, List[GroupScore]]:
    """前三个不同的总分各成一档，同分的组都在该档"""
    distinct = sorted({e.total_score for e in ordered}, reverse=True)[:len(PODIUM_TIERS)]
    podium: Dict[str, List[GroupScore]] = {tier: [] for tier in PODIUM_TIERS}
    for tier, score in zip(PODIUM_TIERS, distinct):
        podium[tier] = [e for e in ordered if e.total_score == score]
    return podium


def find_category_winners(scores: List[GroupScore], categories: Sequence[Category]) -> List[CategoryWinner]:
    result = []
    for category in categories:
        if not scores:
            result.append(CategoryWinner(category=category, winners=[]))
            continue
        best = max(s.category_average(category.id) for s in scores)
        winners = [s for s in scores if s.category_average(category.id) == best]
        result.append(CategoryWinner(category=category, winners=winners))
    return result


def compute_leaderboard(
    groups: Sequence[Group],
    categories: Sequence[Category],
    votes: Sequence[Vote],
) -> Leaderboard:
    """
    计算排行榜

    groups 为发表阵容（按发表顺序），categories 按显示顺序，votes 为活动全部投票。
    按总分、再按票数降序；仍相同的组保持阵容顺序并共享名次。
    """
    scores = [score_group(g, votes, categories) for g in groups]
    ordered = sorted(scores, key=lambda s: (-s.total_score, -s.vote_count))
    _assign_ranks(ordered)
    return Leaderboard(
        entries=ordered,
        podium=build_podium(ordered),
        category_winners=find_category_winners(scores, categories),
    )


def load_leaderboard(event_id: int) -> Leaderboard:
    """从数据库读取阵容、类别与投票并计算排行榜"""
    with get_conn() as conn:
        fetch_event(conn, event_id)
        groups = fetch_lineup(conn, event_id)
        categories = fetch_categories(conn, event_id)
        votes = fetch_votes(conn, event_id)
    return compute_leaderboard(groups, categories, votes)


def leaderboard_csv_rows(leaderboard: Leaderboard, categories: Sequence[Category]) -> List[List[str]]:
    """CSV 导出行（首行为表头）"""
    rows = [["rank", "group", "total", "average", "votes"] + [c.name for c in categories]]
    for e in leaderboard.entries:
        rows.append(
            [str(e.rank), e.group.name, str(e.total_score), f"{e.average_score:.2f}", str(e.vote_count)]
            + [f"{e.category_average(c.id):.2f}" for c in categories]
        )
    return rows
