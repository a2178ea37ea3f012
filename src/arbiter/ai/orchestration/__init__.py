"""Agent loop: stream parsing, conversation state and task orchestration."""

# Core types
from .types import (
    DoneEvent,
    ErrorEvent,
    InteractionResult,
    InteractionStatus,
    Message,
    RecentCommandLog,
    StreamEvent,
    TaskPhase,
    TaskState,
    TextEvent,
    ThinkEndEvent,
    ThinkPartialEvent,
    ThinkStartEvent,
    ToolCallEvent,
    ToolCallRecord,
)

# Streaming parser
from .stream_parser import (
    ParsedResponse,
    ParserState,
    StreamEventParser,
    collect_events,
    parse_response,
)

# Conversation
from .conversation import (
    ConversationConfig,
    ConversationManager,
    EventStream,
)

# Phases and routing
from .phases import (
    ModelRole,
    ModelRouter,
    classify_request_complexity,
    determine_next_phase,
    preferred_role,
)

# Orchestrator
from .orchestrator import (
    EventCallback,
    OrchestratorConfig,
    TaskOrchestrator,
    ToolResultCallback,
)

__all__ = [
    # types.py
    "Message",
    "TextEvent",
    "ThinkStartEvent",
    "ThinkPartialEvent",
    "ThinkEndEvent",
    "ToolCallEvent",
    "ErrorEvent",
    "DoneEvent",
    "StreamEvent",
    "TaskPhase",
    "TaskState",
    "RecentCommandLog",
    "ToolCallRecord",
    "InteractionStatus",
    "InteractionResult",
    # stream_parser.py
    "ParserState",
    "StreamEventParser",
    "ParsedResponse",
    "collect_events",
    "parse_response",
    # conversation.py
    "ConversationConfig",
    "ConversationManager",
    "EventStream",
    # phases.py
    "ModelRole",
    "ModelRouter",
    "classify_request_complexity",
    "determine_next_phase",
    "preferred_role",
    # orchestrator.py
    "TaskOrchestrator",
    "OrchestratorConfig",
    "EventCallback",
    "ToolResultCallback",
]
