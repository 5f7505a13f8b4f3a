"""API routers."""

from marketplace_service.routers import health, parties, ratings, submissions, tasks

__all__ = ["health", "parties", "ratings", "submissions", "tasks"]
