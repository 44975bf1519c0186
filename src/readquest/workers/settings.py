"""arq worker settings module.

Import path for arq CLI: arq readquest.workers.settings.WorkerSettings
"""

from __future__ import annotations

from readquest.workers.ranking_worker import WorkerSettings

__all__ = ["WorkerSettings"]
