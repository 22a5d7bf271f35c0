"""Contributor rankings pipeline: bot detection followed by score calculation."""

import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from github_explorer.core.store import (
    COMMITS,
    CONTRIBUTOR_RANKINGS,
    CONTRIBUTORS,
    ENTITY_KEYS,
    MERGE_REQUESTS,
    REPOSITORIES,
    EntityStore,
    entity_key,
)
from github_explorer.pipelines.base import ExecutionContext, Stage

# Weights of the component scores in the total score
SCORE_WEIGHTS = {
    "code_volume_score": 0.10,
    "commit_impact_score": 0.05,
    "code_efficiency_score": 0.10,
    "collaboration_score": 0.25,
    "repo_popularity_score": 0.25,
    "repo_influence_score": 0.10,
    "followers_score": 0.10,
    "profile_completeness_score": 0.05,
}

PROFILE_FIELD_POINTS = {
    "username": 10,
    "name": 10,
    "avatar": 10,
    "bio": 15,
    "company": 10,
    "location": 10,
    "blog": 10,
    "twitter_username": 10,
    "top_languages": 15,
}

POPULAR_REPO_STARS = 1000
DEFAULT_EFFICIENCY_SCORE = 50.0


async def load_all(store: EntityStore, entity_type: str, batch_size: int) -> List[Dict[str, Any]]:
    """Read every record of ``entity_type`` page by page."""
    records: List[Dict[str, Any]] = []
    offset = 0
    while True:
        batch = await store.fetch_batch(entity_type, batch_size, offset)
        if not batch:
            return records
        records.extend(batch)
        offset += len(batch)


def looks_like_bot(contributor: Dict[str, Any]) -> bool:
    for field in ("username", "name", "bio"):
        value = contributor.get(field)
        if value and "bot" in str(value).lower():
            return True
    return False


def normalize(value: float, maximum: float) -> float:
    return value * 100.0 / maximum if maximum else 0.0


def profile_completeness(contributor: Dict[str, Any]) -> int:
    return sum(
        points for field, points in PROFILE_FIELD_POINTS.items() if contributor.get(field)
    )


def collaboration_score(avg_collaborators: Optional[float]) -> float:
    if avg_collaborators is None or avg_collaborators <= 1:
        return 0.0
    return 100 * (1 - 1 / math.pow(avg_collaborators, 0.8))


def repo_popularity_score(repos: List[Dict[str, Any]]) -> float:
    if not repos:
        return 0.0
    total = sum((r.get("stars") or 0) * 0.7 + (r.get("forks") or 0) * 0.3 for r in repos)
    popular = sum(1 for r in repos if (r.get("stars") or 0) >= POPULAR_REPO_STARS)
    return min(100.0, math.log(total + 1) / math.log(25000) * 60 + min(popular, 5) * 8)


def efficiency(pr_changes: float, commit_changes: float) -> float:
    if commit_changes == 0:
        return 0.0
    return 1 - abs((pr_changes - commit_changes) / commit_changes)


def assign_ranks(rows: List[Dict[str, Any]]) -> None:
    """Assign ``rank_position`` by descending ``total_score``; ties share a rank."""
    rows.sort(key=lambda r: (-r["total_score"], str(r["contributor_github_id"])))
    previous: Optional[float] = None
    rank = 0
    for position, row in enumerate(rows, start=1):
        if previous is None or row["total_score"] != previous:
            rank = position
            previous = row["total_score"]
        row["rank_position"] = rank


class BotDetectionStage(Stage):
    """Flag contributors whose username, name or bio mentions 'bot'."""

    name = "bot_detection"

    def __init__(self, store: EntityStore, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.store = store

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        batch_size = int(self.setting(config, "batch_size", 500))
        contributors = await load_all(self.store, CONTRIBUTORS, batch_size)

        changed = [
            {"github_id": c["github_id"], "is_bot": looks_like_bot(c)}
            for c in contributors
            if bool(c.get("is_bot")) != looks_like_bot(c)
        ]
        if changed:
            await self.store.upsert(CONTRIBUTORS, changed, ENTITY_KEYS[CONTRIBUTORS])

        bots = sum(1 for c in contributors if looks_like_bot(c))
        context.namespace("rankings")["bots_detected"] = bots
        context.logger.info(f"Bot detection flagged {bots} of {len(contributors)} contributors")
        await context.update_status(10, f"Detected {bots} bot accounts")
        return context


class ContributorRankingStage(Stage):
    """Compute weighted contributor scores and store them with their rank."""

    name = "contributor_ranking"

    def __init__(self, store: EntityStore, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.store = store

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> ExecutionContext:
        batch_size = int(self.setting(config, "batch_size", 500))
        contributors = {
            c["github_id"]: c for c in await load_all(self.store, CONTRIBUTORS, batch_size)
        }
        repositories = {
            r["github_id"]: r for r in await load_all(self.store, REPOSITORIES, batch_size)
        }
        await context.update_status(30, "Loaded contributors and repositories")

        merge_requests = {
            (m["repository_github_id"], m["github_id"]): m
            for m in await load_all(self.store, MERGE_REQUESTS, batch_size)
        }
        commits = await load_all(self.store, COMMITS, batch_size)
        await context.update_status(50, f"Loaded {len(commits)} commits")

        rows = self.calculate(contributors, repositories, merge_requests, commits)
        assign_ranks(rows)
        await context.update_status(80, f"Scored {len(rows)} contributors")

        timestamp = datetime.now(timezone.utc).isoformat()
        for row in rows:
            row["calculation_timestamp"] = timestamp
            row["updated_at"] = timestamp
        key = ENTITY_KEYS[CONTRIBUTOR_RANKINGS]
        if rows:
            await self.store.upsert(CONTRIBUTOR_RANKINGS, rows, key)

        # Drop rankings for contributors this run did not rank
        ranked = {entity_key(row, key) for row in rows}
        stale = [
            entity_key(row, key)
            for row in await load_all(self.store, CONTRIBUTOR_RANKINGS, batch_size)
            if entity_key(row, key) not in ranked
        ]
        if stale:
            await self.store.delete(CONTRIBUTOR_RANKINGS, stale)
            context.logger.info(f"Removed {len(stale)} stale contributor rankings")
        context.items_processed += len(rows)
        context.namespace("rankings")["ranked"] = len(rows)
        return context

    def calculate(
        self,
        contributors: Dict[Any, Dict[str, Any]],
        repositories: Dict[Any, Dict[str, Any]],
        merge_requests: Dict[Tuple[Any, Any], Dict[str, Any]],
        commits: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        def non_fork(repo_id: Any) -> bool:
            repo = repositories.get(repo_id)
            return repo is not None and not repo.get("is_fork")

        def is_human(contributor_id: Any) -> bool:
            contributor = contributors.get(contributor_id)
            return contributor is not None and not contributor.get("is_bot")

        stats: Dict[Any, Dict[str, Any]] = defaultdict(
            lambda: {"commits": set(), "added": 0, "removed": 0, "repos": set()}
        )
        pr_commit_changes: Dict[Tuple[Any, Tuple[Any, Any]], int] = defaultdict(int)
        pr_committers: Dict[Tuple[Any, Any], Set[Any]] = defaultdict(set)
        contributor_prs: Dict[Any, Set[Tuple[Any, Any]]] = defaultdict(set)

        for commit in commits:
            contributor_id = commit.get("contributor_github_id")
            repo_id = commit.get("repository_github_id")
            if contributor_id is None or not non_fork(repo_id):
                continue
            added = commit.get("additions") or 0
            removed = commit.get("deletions") or 0
            entry = stats[contributor_id]
            entry["commits"].add(commit.get("sha"))
            entry["added"] += added
            entry["removed"] += removed
            entry["repos"].add(repo_id)

            pr_number = commit.get("pull_request_github_id")
            if pr_number is not None and (repo_id, pr_number) in merge_requests:
                pr_key = (repo_id, pr_number)
                pr_commit_changes[(contributor_id, pr_key)] += added + removed
                contributor_prs[contributor_id].add(pr_key)
                if is_human(contributor_id):
                    pr_committers[pr_key].add(contributor_id)

        eligible = [cid for cid in stats if is_human(cid)]
        if not eligible:
            return []

        max_lines = max(stats[c]["added"] + stats[c]["removed"] for c in eligible)
        max_commits = max(len(stats[c]["commits"]) for c in eligible)
        max_followers = max(contributors[c].get("followers") or 0 for c in eligible)
        max_repos = max(len(stats[c]["repos"]) for c in eligible)

        rows = []
        for cid in eligible:
            contributor = contributors[cid]
            entry = stats[cid]
            total_lines = entry["added"] + entry["removed"]

            prs = contributor_prs.get(cid, set())
            if prs:
                ratios = []
                for pr_key in prs:
                    mr = merge_requests[pr_key]
                    pr_changes = (mr.get("additions") or 0) + (mr.get("deletions") or 0)
                    ratios.append(efficiency(pr_changes, pr_commit_changes[(cid, pr_key)]))
                efficiency_score = sum(ratios) / len(ratios) * 100
                avg_collaborators = sum(len(pr_committers[p]) for p in prs) / len(prs)
            else:
                efficiency_score = DEFAULT_EFFICIENCY_SCORE
                avg_collaborators = None

            followers = contributor.get("followers") or 0
            repos = [repositories[r] for r in entry["repos"]]
            scores = {
                "code_volume_score": normalize(total_lines, max_lines),
                "commit_impact_score": normalize(len(entry["commits"]), max_commits),
                "code_efficiency_score": efficiency_score,
                "collaboration_score": collaboration_score(avg_collaborators),
                "repo_popularity_score": repo_popularity_score(repos),
                "repo_influence_score": normalize(len(entry["repos"]), max_repos),
                "followers_score": normalize(followers, max_followers),
                "profile_completeness_score": profile_completeness(contributor),
            }
            rows.append(
                {
                    "contributor_github_id": cid,
                    "username": contributor.get("username"),
                    "name": contributor.get("name"),
                    **scores,
                    "total_score": sum(scores[k] * w for k, w in SCORE_WEIGHTS.items()),
                    "followers_count": followers,
                    "raw_lines_added": entry["added"],
                    "raw_lines_removed": entry["removed"],
                    "raw_commits_count": len(entry["commits"]),
                    "repositories_contributed": len(entry["repos"]),
                }
            )
        return rows
