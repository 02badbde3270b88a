"""arq worker settings module.

Import path for arq CLI: arq nexus.workers.settings.WorkerSettings
"""

from __future__ import annotations

from nexus.workers.gamification import WorkerSettings

__all__ = ["WorkerSettings"]
