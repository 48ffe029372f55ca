"""
Tests for the version history entity and button states.
"""

import pytest
from pydantic import ValidationError

from domain.entities.bot_response import BotResponse, ResponseMetadata, ResponseVersion
from domain.value_objects.button_state import ButtonState, resolve_button_state
from domain.value_objects.grounding import GroundingData, GroundingSource
from domain.value_objects.turn_request import CommandType
from shared.constants import EMPTY_RESPONSE_MARKER, STOPPED_MARKER


def make_version(version_id: int, text: str = "", **kwargs) -> ResponseVersion:
    return ResponseVersion(version_id=version_id, current_message_id=100, message_ids=[100], text=text, **kwargs)


def make_response(*versions: ResponseVersion) -> BotResponse:
    response = BotResponse(chat_id=1, message_id=100, user_message_id=10)
    for version in versions:
        response.add_version(version)
    return response


class TestBotResponse:
    """BotResponse tests"""

    def test_add_version_selects_it(self):
        """New versions become current"""
        response = make_response(make_version(1, "a"), make_version(2, "b"))
        assert response.version_count == 2
        assert response.current_version_index == 1
        assert response.current_version().text == "b"

    def test_empty_response_has_no_current_version(self):
        """No versions yet"""
        assert make_response().current_version() is None

    def test_switch_bounds(self):
        """Navigation is possible only inside the history"""
        response = make_response(make_version(1), make_version(2))
        assert response.can_switch_prev()
        assert not response.can_switch_next()

        response.select_version(0)
        assert not response.can_switch_prev()
        assert response.can_switch_next()

    def test_select_out_of_range(self):
        """Selecting a missing version raises"""
        response = make_response(make_version(1))
        with pytest.raises(IndexError):
            response.select_version(1)

    def test_owns_continuation_messages(self):
        """Any message of any version belongs to the turn"""
        response = make_response(
            ResponseVersion(version_id=1, current_message_id=101, message_ids=[100, 101])
        )
        assert response.owns_message(100)
        assert response.owns_message(101)
        assert not response.owns_message(102)

    def test_record_round_trip(self):
        """Records rebuild an equal history"""
        grounding = GroundingData(search_queries=["q"], sources=[GroundingSource(uri="https://a.example", title="A")])
        response = make_response(
            make_version(1, "first", grounding_data=[grounding], model_parts={"parts": [1, 2]}),
            make_version(2, "second", was_stopped_by_user=True),
        )
        response.metadata = ResponseMetadata(model="m", command_type=CommandType.IMAGE)
        response.button_state = ButtonState.HAS_VERSIONS

        restored = BotResponse.from_record(response.to_record())

        assert restored.version_count == 2
        assert restored.versions[0].grounding_data[0].sources[0].title == "A"
        assert restored.versions[0].model_parts == {"parts": [1, 2]}
        assert restored.versions[1].was_stopped_by_user
        assert restored.button_state == ButtonState.HAS_VERSIONS
        assert restored.metadata.command_type == CommandType.IMAGE

    def test_invalid_index_is_clamped(self):
        """A stored index past the end points at the last version"""
        record = make_response(make_version(1), make_version(2)).to_record()
        record["current_version_index"] = 7
        assert BotResponse.from_record(record).current_version_index == 1


class TestResponseVersion:
    """ResponseVersion tests"""

    def test_history_text_of_stopped_version(self):
        """Stopped versions carry the marker"""
        assert make_version(1, "partial", was_stopped_by_user=True).history_text == f"partial\n\n{STOPPED_MARKER}"
        assert make_version(1, "", was_stopped_by_user=True).history_text == STOPPED_MARKER

    def test_history_text_of_empty_version(self):
        """Empty answers are stored with a placeholder"""
        assert make_version(1, "").history_text == EMPTY_RESPONSE_MARKER

    def test_versions_are_immutable(self):
        """Stored versions cannot be changed in place"""
        version = make_version(1, "a")
        with pytest.raises(ValidationError):
            version.text = "b"


class TestResolveButtonState:
    """Button state after finalize"""

    def test_single_clean_version_has_no_buttons(self):
        assert resolve_button_state(1) == ButtonState.NONE

    def test_stopped_or_errored_single_version_offers_retry(self):
        assert resolve_button_state(1, stopped=True) == ButtonState.RETRY_ONLY
        assert resolve_button_state(1, errored=True) == ButtonState.RETRY_ONLY

    def test_multiple_versions_win(self):
        assert resolve_button_state(2, stopped=True) == ButtonState.HAS_VERSIONS
