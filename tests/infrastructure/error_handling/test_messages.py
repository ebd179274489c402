"""Tests for user-facing error messages."""

import pytest

from studybuddy.infrastructure.error_handling.messages import (
    UserExperience,
    UserFriendlyMessageSystem,
    UserMessageContext,
)
from studybuddy.models.health import AlertSeverity


@pytest.fixture
def messages():
    return UserFriendlyMessageSystem()


class TestUserFriendlyMessageSystem:

    @pytest.mark.parametrize("layer,message,template_id", [
        (1, "Input too long for model", "input_too_long"),
        (1, "schema mismatch", "input_validation_failed"),
        (2, "conversation history missing", "conversation_history_lost"),
        (3, "confidence below floor", "confidence_too_low"),
        (4, "feedback write failed", "feedback_processing_failed"),
        (5, "performance budget exceeded", "performance_optimization"),
        (4, "Service unavailable", "service_unavailable"),
        (2, "connection reset", "network_timeout"),
    ])
    def test_template_selection(self, classifier, messages, layer, message, template_id):
        error = classifier.create_layer_error(layer, message)
        assert messages.find_template(error).id == template_id

    def test_generated_message(self, classifier, messages):
        error = classifier.create_layer_error(
            2, "conversation history missing", context={"correlation_id": "err-u-s-1-abc123xyz"}
        )
        message = messages.generate_user_message(error)

        assert message.title == "Conversation Context Lost"
        assert message.support_code == "ERR-ABC123XYZ"
        assert message.severity == AlertSeverity.INFO
        assert message.retry_available is True
        assert message.estimated_resolution_time == "1 minute"

    def test_severity_follows_impact(self, classifier, messages):
        error = classifier.create_layer_error(1, "Database connection failed")
        assert messages.generate_user_message(error).severity == AlertSeverity.CRITICAL

    def test_non_recoverable_has_no_resolution_estimate(self, classifier, messages):
        error = classifier.create_layer_error(1, "Authentication failed")
        message = messages.generate_user_message(error)
        assert message.retry_available is False
        assert message.estimated_resolution_time is None

    def test_beginner_wording(self, classifier, messages):
        """Beginners get plainer words and shorter actions."""
        error = classifier.create_layer_error(1, "request timeout")
        message = messages.generate_user_message(error, UserMessageContext(experience=UserExperience.BEGINNER))
        assert message.title == "Connection Issue"
        assert message.action == "Try again in a moment."

    def test_advanced_wording(self, classifier, messages):
        error = classifier.create_layer_error(3, "schema mismatch")
        message = messages.generate_user_message(error, UserMessageContext(experience=UserExperience.ADVANCED))
        assert message.message.endswith("[Layer 3 processing]")

    def test_stored_preferences_apply(self, classifier, messages):
        messages.update_user_preferences("u-9", experience=UserExperience.ADVANCED)
        error = classifier.create_layer_error(3, "schema mismatch")
        message = messages.generate_user_message(error, UserMessageContext(user_id="u-9"))
        assert "[Layer 3 processing]" in message.message

    def test_contextual_help(self, classifier, messages):
        error = classifier.create_layer_error(5, "Critical system error")
        help = messages.get_contextual_help(error)
        assert help.contact_support is True
        assert help.related_topics[:2] == ["quality-assurance", "performance"]
        assert len(help.troubleshooting_steps) == 4

    def test_statistics(self, classifier, messages):
        messages.generate_user_message(classifier.create_layer_error(1, "schema mismatch"))
        messages.generate_user_message(classifier.create_layer_error(1, "Input too long"))
        stats = messages.get_message_statistics()
        assert stats["total_messages"] == 2
        assert stats["by_category"] == {"input": 2}
