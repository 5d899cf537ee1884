"""Read-only views handed to the presentation layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .challenges import ChallengeManager, ChallengeSummary
from .collection import Collection, CollectionProgress
from .ledger import ExperienceProgress, Ledger, LevelReward
from .routes import RouteTracker
from .state import Achievement, ChallengeState, RouteState
from .types import CollectionType


class _View(BaseModel):
    model_config = ConfigDict(frozen=True)


class ChallengeView(_View):
    instance_id: str
    template_id: str
    name: str
    category: str
    state: ChallengeState
    progress: int
    objective: int
    percent: float
    deadline: datetime


class RouteView(_View):
    instance_id: str
    template_id: str
    name: str
    state: RouteState
    current_waypoint: Optional[str]
    waypoints_completed: int
    total_waypoints: int
    narrative_progress: float
    discoveries: int


class ProgressView(_View):
    """Detached copy of one user's progression."""

    user_id: str
    level: int
    experience: ExperienceProgress
    upcoming_rewards: list[LevelReward]
    total_points: int
    current_streak: int
    best_streak: int
    ledger: dict[str, int]
    achievements: list[Achievement]
    collections: list[CollectionProgress]
    challenges: list[ChallengeView]
    challenge_summary: ChallengeSummary
    routes: list[RouteView]
    titles: list[str]
    active_title: Optional[str] = None


def build_view(
    user_id: str,
    *,
    ledger: Ledger,
    collection: Collection,
    challenges: ChallengeManager,
    routes: RouteTracker,
) -> ProgressView:
    state = ledger.state
    challenge_views = [
        ChallengeView(
            instance_id=i.instance_id,
            template_id=i.template_id,
            name=i.name,
            category=i.category,
            state=i.state,
            progress=i.progress,
            objective=i.config.objective,
            percent=round(min(i.progress / i.config.objective, 1.0) * 100, 2),
            deadline=i.deadline,
        )
        for i in state.challenges.values()
    ]
    route_views = [
        RouteView(
            instance_id=r.instance_id,
            template_id=r.template_id,
            name=r.name,
            state=r.state,
            current_waypoint=r.current_waypoint.id if r.current_waypoint else None,
            waypoints_completed=sum(1 for w in r.waypoints if w.completed),
            total_waypoints=len(r.waypoints),
            narrative_progress=routes.narrative_progress(r.instance_id),
            discoveries=len(r.discoveries),
        )
        for r in state.routes.values()
    ]
    return ProgressView(
        user_id=user_id,
        level=state.profile.level,
        experience=ledger.experience_progress(),
        upcoming_rewards=ledger.upcoming_level_rewards(),
        total_points=state.profile.total_points,
        current_streak=state.profile.current_streak,
        best_streak=state.statistics.best_streak,
        ledger=state.ledger.model_dump(),
        achievements=[a.model_copy() for a in state.achievements.values()],
        collections=[collection.progress(t) for t in CollectionType],
        challenges=challenge_views,
        challenge_summary=challenges.summary(),
        routes=route_views,
        titles=list(state.titles),
        active_title=state.active_title,
    )
