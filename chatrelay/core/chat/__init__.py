from .resume import resume_stream
from .turn import TurnOrchestrator

__all__ = ["TurnOrchestrator", "resume_stream"]
