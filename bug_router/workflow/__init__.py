from .education import EducationResponder, EducationResponse
from .feedback import FeedbackAction, FeedbackHandler, FeedbackOutcome, FeedbackStatus, PullRequestTracker
from .orchestrator import DailySummary, WorkflowOrchestrator, WorkflowOutcome
from .workflows import RemediationWorkflows, WorkflowResult, WorkflowSettings

__all__ = [
    "DailySummary",
    "EducationResponder",
    "EducationResponse",
    "FeedbackAction",
    "FeedbackHandler",
    "FeedbackOutcome",
    "FeedbackStatus",
    "PullRequestTracker",
    "RemediationWorkflows",
    "WorkflowOrchestrator",
    "WorkflowOutcome",
    "WorkflowResult",
    "WorkflowSettings",
]
