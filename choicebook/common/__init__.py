"""
Common utilities shared across Choicebook modules.
"""

from .errors import (
    CLASSIFICATION_RULES,
    USER_MESSAGES,
    ClassificationRule,
    ErrorCode,
    ErrorRecord,
    GenerationError,
    OperationContext,
    classify_error,
    error_response,
    operation_error_message,
    recovery_suggestions,
    should_show_detailed_error,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion
from .retry import RetryConfig, SleepCallable, backoff_delay, with_retry

__all__ = [
    "CLASSIFICATION_RULES",
    "USER_MESSAGES",
    "ChatResult",
    "ClassificationRule",
    "CompletionCallable",
    "ErrorCode",
    "ErrorRecord",
    "GenerationError",
    "OperationContext",
    "RetryConfig",
    "SleepCallable",
    "backoff_delay",
    "call_chat_completion",
    "classify_error",
    "error_response",
    "operation_error_message",
    "recovery_suggestions",
    "should_show_detailed_error",
    "with_retry",
]
