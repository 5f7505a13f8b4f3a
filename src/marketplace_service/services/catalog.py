"""Bronze-task business support categories."""

from __future__ import annotations

from typing import Any

from marketplace_service.core.exceptions import ServiceError

DIFFICULTIES: tuple[str, ...] = ("beginner", "intermediate", "advanced")

CATEGORIES: tuple[dict[str, Any], ...] = (
    {
        "id": "data-entry",
        "name": "Data Entry & Organization",
        "description": "Digital data input, spreadsheet management, and database organization",
        "avgRate": 150,
        "difficulty": "beginner",
        "skills": ["Typing", "Excel", "Attention to Detail", "Data Accuracy"],
        "timeRange": "1-3 hours",
        "payRange": "₹200-600",
    },
    {
        "id": "content-creation",
        "name": "Content & Communication",
        "description": "Business content writing, social media, and customer communication",
        "avgRate": 200,
        "difficulty": "intermediate",
        "skills": ["English Writing", "Communication", "Creativity", "Social Media"],
        "timeRange": "1-3 hours",
        "payRange": "₹300-800",
    },
    {
        "id": "customer-service",
        "name": "Customer Service & Research",
        "description": "Customer support, lead generation, and market research tasks",
        "avgRate": 180,
        "difficulty": "intermediate",
        "skills": ["Communication", "Research", "Customer Service", "Phone/Chat"],
        "timeRange": "2-4 hours",
        "payRange": "₹300-1000",
    },
    {
        "id": "basic-design",
        "name": "Basic Design & Visual Content",
        "description": "Simple graphic design using tools like Canva for business needs",
        "avgRate": 220,
        "difficulty": "beginner",
        "skills": ["Canva", "Design Sense", "Visual Communication", "Brand Awareness"],
        "timeRange": "1-2 hours",
        "payRange": "₹250-700",
    },
    {
        "id": "basic-finance",
        "name": "Basic Finance & Admin",
        "description": "Simple bookkeeping, invoicing, and administrative tasks",
        "avgRate": 160,
        "difficulty": "beginner",
        "skills": ["Basic Math", "Excel", "Attention to Detail", "Organization"],
        "timeRange": "1-2 hours",
        "payRange": "₹200-500",
    },
    {
        "id": "research-analysis",
        "name": "Research & Analysis",
        "description": "Information gathering, competitor research, and basic analysis",
        "avgRate": 190,
        "difficulty": "intermediate",
        "skills": ["Internet Research", "Analysis", "Report Writing", "Data Collection"],
        "timeRange": "2-4 hours",
        "payRange": "₹400-1200",
    },
)


def to_category_enum(value: str) -> str:
    """``data-entry`` or ``DATA_ENTRY`` -> ``DATA_ENTRY``."""
    return value.strip().upper().replace("-", "_")


def to_category_slug(enum_value: str) -> str:
    """``DATA_ENTRY`` -> ``data-entry``."""
    return enum_value.lower().replace("_", "-")


def category_display(enum_value: str) -> str:
    """``DATA_ENTRY`` -> ``Data Entry``."""
    return " ".join(word.capitalize() for word in enum_value.split("_"))


CATEGORY_ENUMS: frozenset[str] = frozenset(to_category_enum(c["id"]) for c in CATEGORIES)


def parse_category(value: object) -> str:
    """
    Validate a category id or enum and return the enum form.

    Raises:
        ServiceError: 400 "Validation error" for unknown categories
    """
    if not isinstance(value, str) or to_category_enum(value) not in CATEGORY_ENUMS:
        raise ServiceError(
            "Validation error",
            f"category must be one of: {', '.join(c['id'] for c in CATEGORIES)}",
            400,
            {"field": "category", "value": value},
        )
    return to_category_enum(value)


def list_categories(task_counts: dict[str, int]) -> list[dict[str, Any]]:
    """Return the catalog with a live ``taskCount`` per category."""
    return [
        {**category, "taskCount": task_counts.get(to_category_enum(category["id"]), 0)}
        for category in CATEGORIES
    ]
