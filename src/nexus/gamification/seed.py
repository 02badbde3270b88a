"""Badge seed data: the platform catalog, upserted by slug."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from nexus.gamification.point_values import EventType, ResourceCountKind
from nexus.gamification.types import BadgeDefinition, BadgeRequirement, RequirementKind

BADGE_SEED_DATA: list[dict] = [
    # Learning
    {
        "slug": "first-steps",
        "name": "First Steps",
        "description": "Enroll in your first course",
        "icon": "GraduationCap",
        "category": "learning",
        "requirement_kind": "resource_count",
        "requirement_target": "enrollments",
        "threshold": 1,
        "points": 10,
        "sort_order": 1,
    },
    {
        "slug": "dedicated-learner",
        "name": "Dedicated Learner",
        "description": "Complete 10 lessons",
        "icon": "BookOpen",
        "category": "learning",
        "requirement_kind": "resource_count",
        "requirement_target": "lessons_completed",
        "threshold": 10,
        "points": 25,
        "sort_order": 2,
    },
    {
        "slug": "course-completer",
        "name": "Course Completer",
        "description": "Complete your first course",
        "icon": "Award",
        "category": "learning",
        "requirement_kind": "resource_count",
        "requirement_target": "courses_completed",
        "threshold": 1,
        "points": 50,
        "sort_order": 3,
    },
    {
        "slug": "knowledge-seeker",
        "name": "Knowledge Seeker",
        "description": "Enroll in 5 courses",
        "icon": "Library",
        "category": "learning",
        "requirement_kind": "resource_count",
        "requirement_target": "enrollments",
        "threshold": 5,
        "points": 30,
        "sort_order": 4,
    },
    {
        "slug": "master-student",
        "name": "Master Student",
        "description": "Complete 5 courses",
        "icon": "Trophy",
        "category": "learning",
        "requirement_kind": "resource_count",
        "requirement_target": "courses_completed",
        "threshold": 5,
        "points": 100,
        "sort_order": 5,
    },
    # Community
    {
        "slug": "conversation-starter",
        "name": "Conversation Starter",
        "description": "Start your first discussion",
        "icon": "MessageSquare",
        "category": "community",
        "requirement_kind": "resource_count",
        "requirement_target": "discussions",
        "threshold": 1,
        "points": 15,
        "sort_order": 6,
    },
    {
        "slug": "helpful-contributor",
        "name": "Helpful Contributor",
        "description": "Add 10 comments",
        "icon": "MessageCircle",
        "category": "community",
        "requirement_kind": "resource_count",
        "requirement_target": "comments",
        "threshold": 10,
        "points": 25,
        "sort_order": 7,
    },
    {
        "slug": "community-pillar",
        "name": "Community Pillar",
        "description": "Start 10 discussions",
        "icon": "Users",
        "category": "community",
        "requirement_kind": "resource_count",
        "requirement_target": "discussions",
        "threshold": 10,
        "points": 50,
        "sort_order": 8,
    },
    {
        "slug": "reviewer",
        "name": "Reviewer",
        "description": "Review 5 shared tools",
        "icon": "ClipboardCheck",
        "category": "community",
        "requirement_kind": "event_count",
        "requirement_target": "review_added",
        "threshold": 5,
        "points": 20,
        "sort_order": 9,
    },
    # Achievement
    {
        "slug": "creator",
        "name": "Creator",
        "description": "Submit your first project",
        "icon": "Lightbulb",
        "category": "achievement",
        "requirement_kind": "resource_count",
        "requirement_target": "projects",
        "threshold": 1,
        "points": 25,
        "sort_order": 10,
    },
    {
        "slug": "innovator",
        "name": "Innovator",
        "description": "Have a project approved",
        "icon": "Sparkles",
        "category": "achievement",
        "requirement_kind": "resource_count",
        "requirement_target": "projects_approved",
        "threshold": 1,
        "points": 40,
        "sort_order": 11,
    },
    {
        "slug": "tool-maker",
        "name": "Tool Maker",
        "description": "Publish your first tool",
        "icon": "Wrench",
        "category": "achievement",
        "requirement_kind": "resource_count",
        "requirement_target": "tools",
        "threshold": 1,
        "points": 30,
        "sort_order": 12,
    },
    {
        "slug": "rising-star",
        "name": "Rising Star",
        "description": "Have a project featured",
        "icon": "Star",
        "category": "achievement",
        "requirement_kind": "resource_count",
        "requirement_target": "projects_featured",
        "threshold": 1,
        "points": 75,
        "sort_order": 13,
    },
    # Special
    {
        "slug": "regular",
        "name": "Regular",
        "description": "Log in on 7 different days",
        "icon": "CalendarCheck",
        "category": "special",
        "requirement_kind": "event_count",
        "requirement_target": "daily_login",
        "threshold": 7,
        "points": 15,
        "sort_order": 14,
    },
    {
        "slug": "centurion",
        "name": "Centurion",
        "description": "Earn 100 points",
        "icon": "Zap",
        "category": "special",
        "requirement_kind": "points",
        "requirement_target": None,
        "threshold": 100,
        "points": 0,
        "sort_order": 15,
    },
    {
        "slug": "high-achiever",
        "name": "High Achiever",
        "description": "Reach level 5",
        "icon": "Medal",
        "category": "special",
        "requirement_kind": "level",
        "requirement_target": None,
        "threshold": 5,
        "points": 50,
        "sort_order": 16,
    },
    {
        "slug": "elite",
        "name": "Elite",
        "description": "Reach level 10",
        "icon": "Crown",
        "category": "special",
        "requirement_kind": "level",
        "requirement_target": None,
        "threshold": 10,
        "points": 100,
        "sort_order": 17,
    },
]


def parse_requirement(kind: str, target: str | None, threshold: int) -> BadgeRequirement:
    """Build a typed requirement from its stored columns.

    Raises ValueError for an unknown kind, or a target that does not fit the kind.
    """
    requirement_kind = RequirementKind(kind)
    resolved: ResourceCountKind | EventType | None = None
    if requirement_kind is RequirementKind.RESOURCE_COUNT:
        resolved = ResourceCountKind(target)
    elif requirement_kind is RequirementKind.EVENT_COUNT:
        resolved = EventType(target)
    return BadgeRequirement(kind=requirement_kind, threshold=threshold, target=resolved)


def definition_from_row(badge_id: int, data: Mapping[str, Any]) -> BadgeDefinition:
    """Convert a badge row (ORM attributes or a seed dict) into a definition."""
    return BadgeDefinition(
        id=badge_id,
        slug=data["slug"],
        name=data["name"],
        description=data["description"],
        icon=data["icon"],
        category=data["category"],
        requirement=parse_requirement(data["requirement_kind"], data.get("requirement_target"), data["threshold"]),
        points=data.get("points", 0),
        sort_order=data.get("sort_order", 0),
    )
