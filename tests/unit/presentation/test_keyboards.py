"""
Tests for response keyboards.
"""

from domain.value_objects.button_state import ButtonState
from presentation.keyboards.keyboards import Keyboards
from shared.constants import TELEGRAM_CALLBACK_DATA_LIMIT


def button_texts(markup):
    return [button.text for row in markup.inline_keyboard for button in row]


def callbacks(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


class TestResponseButtons:
    """Keyboards.response_buttons tests"""

    def test_processing_shows_stop(self):
        markup = Keyboards.response_buttons(ButtonState.PROCESSING)
        assert button_texts(markup) == ["⏹ Stop"]
        assert callbacks(markup) == ["resp:stop"]

    def test_retry_only(self):
        markup = Keyboards.response_buttons(ButtonState.RETRY_ONLY)
        assert callbacks(markup) == ["resp:retry"]

    def test_edit_detected_offers_retry(self):
        markup = Keyboards.response_buttons(ButtonState.EDIT_DETECTED)
        assert button_texts(markup) == ["✏️ Edited · Retry"]
        assert callbacks(markup) == ["resp:retry"]

    def test_none_has_no_keyboard(self):
        assert Keyboards.response_buttons(ButtonState.NONE) is None

    def test_version_navigation_middle(self):
        """Both arrows around the position counter"""
        markup = Keyboards.response_buttons(ButtonState.HAS_VERSIONS, 1, 3)
        assert button_texts(markup) == ["◀", "🔄 2/3", "▶"]
        assert callbacks(markup) == ["resp:prev", "resp:retry", "resp:next"]

    def test_version_navigation_edges(self):
        """No arrow past either end"""
        first = Keyboards.response_buttons(ButtonState.HAS_VERSIONS, 0, 2)
        last = Keyboards.response_buttons(ButtonState.HAS_VERSIONS, 1, 2)
        assert button_texts(first) == ["🔄 1/2", "▶"]
        assert button_texts(last) == ["◀", "🔄 2/2"]

    def test_callback_data_fits_telegram_limit(self):
        markup = Keyboards.response_buttons(ButtonState.HAS_VERSIONS, 5, 10)
        assert all(len(data.encode()) <= TELEGRAM_CALLBACK_DATA_LIMIT for data in callbacks(markup))
