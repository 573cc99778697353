"""Baseline selection strategies.

Every strategy exposes ``select_baseline(query, candidates)`` and is a pure
function of its arguments: candidates are never mutated and ties in
``updated_at`` keep their input order.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from baseline_engine.models.baseline import Baseline, BaselineQuery

logger = logging.getLogger(__name__)

DEFAULT_BRANCHES = ("main", "master")


def _most_recent(candidates: Sequence[Baseline]) -> Baseline | None:
    if not candidates:
        return None
    return sorted(candidates, key=lambda b: b.updated_at, reverse=True)[0]


class BaselineStrategy(Protocol):
    name: str
    description: str

    def select_baseline(
        self, query: BaselineQuery, candidates: Sequence[Baseline]
    ) -> Baseline | None: ...


class LatestBaselineStrategy:
    name = "latest"
    description = "Uses the most recent baseline for comparison"

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        return _most_recent(candidates)


class BranchBaselineStrategy:
    name = "branch"
    description = "Prefers baselines from the same branch, falls back to main/master"

    def __init__(self, current_branch: Optional[str] = None):
        self.current_branch = current_branch

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        if not candidates:
            return None

        branch = (query.repository.branch if query.repository else None) or self.current_branch
        if branch:
            same_branch = [b for b in candidates if b.repository.branch == branch]
            if same_branch:
                return _most_recent(same_branch)

        main_branch = [b for b in candidates if b.repository.branch in DEFAULT_BRANCHES]
        if main_branch:
            return _most_recent(main_branch)

        return _most_recent(candidates)


class TaggedBaselineStrategy:
    """Only baselines carrying every required tag qualify. No fallback."""

    name = "tagged"
    description = 'Uses baselines with specific tags (e.g., "stable", "release")'

    def __init__(self, required_tags: Optional[Sequence[str]] = None):
        self.required_tags = list(required_tags) if required_tags is not None else ["stable"]

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        required = set(self.required_tags)
        tagged = [
            b for b in candidates
            if b.metadata.tags is not None and required.issubset(b.metadata.tags)
        ]
        return _most_recent(tagged)


class CommitBaselineStrategy:
    name = "commit"
    description = "Uses baseline from a specific commit"

    def __init__(self, target_commit: str):
        self.target_commit = target_commit

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        return next((b for b in candidates if b.metadata.commit == self.target_commit), None)


class PRBaselineStrategy:
    name = "pr"
    description = "Uses baseline from the PR's base branch"

    def __init__(self, base_branch: str):
        self.base_branch = base_branch

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        on_base = [b for b in candidates if b.repository.branch == self.base_branch]
        if on_base:
            return _most_recent(on_base)
        return _most_recent(candidates)


class SmartBaselineStrategy:
    """Tries stable tags, the PR base branch, the current branch, then latest."""

    name = "smart"
    description = "Selects the best baseline using an ordered chain of strategies"

    def __init__(
        self,
        pr_number: Optional[int] = None,
        base_branch: Optional[str] = None,
        current_branch: Optional[str] = None,
    ):
        self.pr_number = pr_number
        self.strategies: list[BaselineStrategy] = [TaggedBaselineStrategy(["stable"])]
        if base_branch:
            self.strategies.append(PRBaselineStrategy(base_branch))
        if current_branch:
            self.strategies.append(BranchBaselineStrategy(current_branch))
        self.strategies.append(LatestBaselineStrategy())

    def select_baseline(self, query: BaselineQuery, candidates: Sequence[Baseline]) -> Baseline | None:
        for strategy in self.strategies:
            selected = strategy.select_baseline(query, candidates)
            if selected is not None:
                logger.debug("Smart strategy resolved baseline %s via %s", selected.id, strategy.name)
                return selected
        return None


def create_strategy(name: str, **options) -> BaselineStrategy:
    """Build a strategy by name. Unknown names get the smart strategy."""
    match name:
        case "latest":
            return LatestBaselineStrategy()
        case "branch":
            return BranchBaselineStrategy(options.get("current_branch"))
        case "tagged":
            return TaggedBaselineStrategy(options.get("tags") or ["stable"])
        case "commit":
            if not options.get("commit"):
                raise ValueError("Commit strategy requires a target commit")
            return CommitBaselineStrategy(options["commit"])
        case "pr":
            if not options.get("base_branch"):
                raise ValueError("PR strategy requires a base branch")
            return PRBaselineStrategy(options["base_branch"])
        case _:
            return SmartBaselineStrategy(
                pr_number=options.get("pr_number"),
                base_branch=options.get("base_branch"),
                current_branch=options.get("current_branch"),
            )
