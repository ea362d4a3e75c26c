from .cancellation import CancellationToken
from .config import PulseSettings
from .context import PulseContext, SafetySignal
from .hooks import HookRunner
from .lifecycle import SendLifecycle, SendPhase, SendState, SendStateError
from .models import (
    Attachment,
    AttachmentCategory,
    Composer,
    InlineAction,
    Message,
    MessageKind,
    Mood,
    SendOutcome,
    Session,
)
from .notices import Notice, NoticeChannel
from .orchestrator import SendOrchestrator
from .safety import SafetyClassifier
from .sessions import SessionManager, SessionNotFoundError
from .streaming import ReplyStreamer

__all__ = [
    "Attachment",
    "AttachmentCategory",
    "CancellationToken",
    "Composer",
    "HookRunner",
    "InlineAction",
    "Message",
    "MessageKind",
    "Mood",
    "Notice",
    "NoticeChannel",
    "PulseContext",
    "PulseSettings",
    "ReplyStreamer",
    "SafetyClassifier",
    "SafetySignal",
    "SendLifecycle",
    "SendOrchestrator",
    "SendOutcome",
    "SendPhase",
    "SendState",
    "SendStateError",
    "Session",
    "SessionManager",
    "SessionNotFoundError",
]
