"""API routers grouped by feature."""

from . import admin, auth, bidirectional, billing, blog, config, curriculum, exercises, health, streaks, tts, vocabulary

__all__ = [
    "admin",
    "auth",
    "bidirectional",
    "billing",
    "blog",
    "config",
    "curriculum",
    "exercises",
    "health",
    "streaks",
    "tts",
    "vocabulary",
]
