from .orchestrator import TimetableOrchestrator
from .settings import TimetableSettings
from .task import build_tasks

__all__ = ["TimetableOrchestrator", "TimetableSettings", "build_tasks"]
