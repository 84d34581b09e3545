"""Claude CLI orchestration utilities."""

from .models import AskQuestion, ClaudeResult, PermissionDenial, QuestionOption
from .protocol import StreamDecoder
from .runner import ClaudeRunner, SpawnHandle, terminate_process

__all__ = [
    "AskQuestion",
    "ClaudeResult",
    "ClaudeRunner",
    "PermissionDenial",
    "QuestionOption",
    "SpawnHandle",
    "StreamDecoder",
    "terminate_process",
]
