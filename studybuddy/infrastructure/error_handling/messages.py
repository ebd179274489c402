"""
User-friendly error messages.

Maps a LayerError to a message a student can act on: title, message,
suggested action, display severity and a short support code that support
staff can trace back to the correlation id. Wording adapts to the reader's
experience level.
"""

import re
from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.error_handling.classification import KeywordRule, first_match
from studybuddy.models.health import AlertSeverity
from studybuddy.models.layers import get_layer


class UserExperience(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class UserMessageTemplate:
    id: str
    category: str
    severity: AlertSeverity
    title: str
    message: str
    action: str
    retryable: bool
    support_info: Optional[str] = None


@dataclass
class UserMessageContext:
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    experience: UserExperience = UserExperience.INTERMEDIATE
    language: str = "en"


@dataclass
class UserMessage:
    title: str
    message: str
    action: str
    severity: AlertSeverity
    support_code: str
    retry_available: bool
    template_id: str
    estimated_resolution_time: Optional[str] = None


@dataclass
class ContextualHelp:
    help_text: str
    related_topics: List[str]
    troubleshooting_steps: List[str]
    contact_support: bool


TEMPLATES: Mapping[str, UserMessageTemplate] = {t.id: t for t in (
    UserMessageTemplate(
        "input_validation_failed", "input", AlertSeverity.WARNING, "Input Needs Review",
        "I need to review your input to provide the best response.",
        "Please check your message and try again.", True,
        "Make sure your question is clear and complete.",
    ),
    UserMessageTemplate(
        "input_too_long", "input", AlertSeverity.WARNING, "Message Too Long",
        "Your message is quite detailed. Let me break it down for better processing.",
        "I'll process this in smaller parts for better accuracy.", False,
        "Try breaking long questions into shorter ones.",
    ),
    UserMessageTemplate(
        "context_unavailable", "processing", AlertSeverity.WARNING, "Memory Refresh",
        "I need to refresh my memory to provide you with the best response.",
        "Please give me a moment to access the information I need.", True,
        "This usually takes just a few seconds.",
    ),
    UserMessageTemplate(
        "conversation_history_lost", "processing", AlertSeverity.ERROR, "Conversation Context Lost",
        "I've lost some context from our conversation. Let me reconnect with you.",
        "Could you briefly remind me what we were discussing?", True,
        "I'll do my best to maintain context throughout our chat.",
    ),
    UserMessageTemplate(
        "response_validation_failed", "validation", AlertSeverity.WARNING, "Quality Check in Progress",
        "I'm double-checking my response to ensure accuracy.",
        "Please wait while I verify the information.", False,
        "Quality checks help me provide better responses.",
    ),
    UserMessageTemplate(
        "confidence_too_low", "validation", AlertSeverity.INFO, "Confidence Check",
        "I want to make sure I give you the most accurate information.",
        "Let me provide what I'm confident about and suggest additional resources.", True,
        "I'll be honest about what I know and don't know.",
    ),
    UserMessageTemplate(
        "feedback_processing_failed", "processing", AlertSeverity.INFO, "Learning Update",
        "I'm updating my understanding based on our interaction.",
        "This will help me provide better responses in the future.", False,
        "I continuously learn from our conversations.",
    ),
    UserMessageTemplate(
        "quality_check_timeout", "system", AlertSeverity.WARNING, "Quality Assurance",
        "I'm running additional quality checks to ensure the best response.",
        "This helps me maintain high standards.", False,
        "Quality checks ensure reliable responses.",
    ),
    UserMessageTemplate(
        "performance_optimization", "system", AlertSeverity.INFO, "Performance Optimization",
        "I'm optimizing my response for better performance.",
        "This should result in faster, more accurate responses.", False,
        "I continuously optimize my performance.",
    ),
    UserMessageTemplate(
        "network_timeout", "network", AlertSeverity.WARNING, "Connection Issue",
        "I'm experiencing some network delays.",
        "Please try again in a moment.", True,
        "This is usually resolved quickly.",
    ),
    UserMessageTemplate(
        "service_unavailable", "system", AlertSeverity.CRITICAL, "Service Temporarily Unavailable",
        "I'm currently experiencing high demand.",
        "Please try again in a few minutes.", True,
        "I'll be back to full capacity soon.",
    ),
)}

LAYER_TEMPLATE_RULES: Mapping[int, Sequence[KeywordRule[str]]] = {
    1: (KeywordRule(("too long", "length", "too large"), "input_too_long"),),
    2: (KeywordRule(("history", "conversation"), "conversation_history_lost"),),
    3: (KeywordRule(("confidence", "uncertain"), "confidence_too_low"),),
    4: (),
    5: (KeywordRule(("performance", "optimiz"), "performance_optimization"),),
}

# Checked after the layer rules
GENERIC_TEMPLATE_RULES: Sequence[KeywordRule[str]] = (
    KeywordRule(("service unavailable", "rate limit", "high demand"), "service_unavailable"),
    KeywordRule(("network", "connection", "timeout"), "network_timeout"),
)

LAYER_DEFAULT_TEMPLATE: Mapping[int, str] = {
    1: "input_validation_failed",
    2: "context_unavailable",
    3: "response_validation_failed",
    4: "feedback_processing_failed",
    5: "quality_check_timeout",
}

IMPACT_SEVERITY: Mapping[Impact, AlertSeverity] = {
    Impact.LOW: AlertSeverity.INFO,
    Impact.MEDIUM: AlertSeverity.WARNING,
    Impact.HIGH: AlertSeverity.ERROR,
    Impact.CRITICAL: AlertSeverity.CRITICAL,
}

LAYER_HELP: Mapping[int, Dict] = {
    1: {"help_text": "Input validation helps me understand your question better.",
        "related_topics": ["question-asking", "clear-communication"]},
    2: {"help_text": "Context management helps me remember our conversation.",
        "related_topics": ["conversation-memory", "context-awareness"]},
    3: {"help_text": "Response validation ensures I give you accurate information.",
        "related_topics": ["fact-checking", "accuracy"]},
    4: {"help_text": "Learning from feedback helps me improve over time.",
        "related_topics": ["feedback", "personalization"]},
    5: {"help_text": "Quality monitoring ensures consistent, reliable responses.",
        "related_topics": ["quality-assurance", "performance"]},
}

TROUBLESHOOTING_STEPS = [
    "Wait a moment and try again",
    "Check your internet connection",
    "Refresh the page if the problem persists",
    "Contact support if issues continue",
]

_BEGINNER_MESSAGE_WORDS = (
    (re.compile("validation", re.IGNORECASE), "checking"),
    (re.compile("authentication", re.IGNORECASE), "login"),
    (re.compile("authorization", re.IGNORECASE), "permission"),
    (re.compile("timeout", re.IGNORECASE), "taking too long"),
    (re.compile("optimization", re.IGNORECASE), "improvement"),
    (re.compile("optimizing", re.IGNORECASE), "improving"),
)

_BEGINNER_ACTION_WORDS = (
    (re.compile("Please try again", re.IGNORECASE), "Try again"),
    (re.compile("Please wait", re.IGNORECASE), "Wait a moment"),
    (re.compile("Please check", re.IGNORECASE), "Check"),
)


def _rewrite(text: str, replacements) -> str:
    for pattern, replacement in replacements:
        text = pattern.sub(replacement, text)
    return text


class UserFriendlyMessageSystem:
    """Selects and customises message templates for LayerErrors."""

    def __init__(self):
        self.templates: Dict[str, UserMessageTemplate] = dict(TEMPLATES)
        self.user_preferences: Dict[str, UserMessageContext] = {}
        self._generated: Counter = Counter()
        self._by_severity: Counter = Counter()

    def find_template(self, error: LayerError) -> UserMessageTemplate:
        text = error.message if error.original_error is None else f"{error.message} {error.original_error}"
        template_id = first_match(LAYER_TEMPLATE_RULES.get(error.layer, ()), text, None)
        if template_id is None:
            template_id = first_match(GENERIC_TEMPLATE_RULES, text, LAYER_DEFAULT_TEMPLATE[error.layer])
        return self.templates[template_id]

    def generate_user_message(self, error: LayerError, context: Optional[UserMessageContext] = None) -> UserMessage:
        ctx = self._resolve_context(context)
        template = self.customize(self.find_template(error), ctx, error.layer)
        severity = IMPACT_SEVERITY[error.impact]

        self._generated[template.category] += 1
        self._by_severity[severity.value] += 1

        return UserMessage(
            title=template.title,
            message=template.message,
            action=template.action,
            severity=severity,
            support_code=self.support_code(error.correlation_id),
            retry_available=error.can_retry,
            template_id=template.id,
            estimated_resolution_time=get_layer(error.layer).estimated_resolution if error.recoverable else None,
        )

    def customize(self, template: UserMessageTemplate, context: UserMessageContext, layer: int) -> UserMessageTemplate:
        if context.experience == UserExperience.BEGINNER:
            return replace(
                template,
                message=_rewrite(template.message, _BEGINNER_MESSAGE_WORDS),
                action=_rewrite(template.action, _BEGINNER_ACTION_WORDS),
            )
        if context.experience == UserExperience.ADVANCED:
            return replace(template, message=f"{template.message} [Layer {layer} processing]")
        return template

    @staticmethod
    def support_code(correlation_id: str) -> str:
        tail = correlation_id.replace("_", "-").split("-")[-1] or correlation_id[:8]
        return f"ERR-{tail.upper()}"

    def get_contextual_help(self, error: LayerError) -> ContextualHelp:
        layer_help = LAYER_HELP[error.layer]
        return ContextualHelp(
            help_text=layer_help["help_text"],
            related_topics=list(layer_help["related_topics"]) + ["troubleshooting", "common-issues", "getting-help"],
            troubleshooting_steps=list(TROUBLESHOOTING_STEPS),
            contact_support=(
                error.impact == Impact.CRITICAL
                or error.recovery_attempts >= error.max_recovery_attempts
            ),
        )

    def update_user_preferences(self, user_id: str, **preferences) -> UserMessageContext:
        existing = self.user_preferences.get(user_id) or UserMessageContext(user_id=user_id)
        updated = replace(existing, **preferences)
        self.user_preferences[user_id] = updated
        return updated

    def _resolve_context(self, context: Optional[UserMessageContext]) -> UserMessageContext:
        if context is None:
            return UserMessageContext()
        if context.user_id and context.user_id in self.user_preferences:
            stored = self.user_preferences[context.user_id]
            return replace(context, experience=stored.experience, language=stored.language)
        return context

    def get_message_statistics(self) -> Dict:
        return {
            "total_messages": sum(self._generated.values()),
            "by_category": dict(self._generated),
            "by_severity": dict(self._by_severity),
        }
