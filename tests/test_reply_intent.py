"""
Reply classification tests
"""
import pytest

from fleetrelay.services.reply_intent import ReplyIntent, classify_reply, normalize_reply


class TestClassifyReply:
    """Test mapping free-text replies to intents"""

    @pytest.mark.parametrize('text', ['YES', 'y', 'Yes!', ' ok ', 'Sure thing', "I'll take it", 'accept'])
    def test_accept(self, text):
        assert classify_reply(text) is ReplyIntent.ACCEPT

    @pytest.mark.parametrize('text', ['no', 'NO.', 'Nope', "can't today", 'not available', 'decline'])
    def test_decline(self, text):
        assert classify_reply(text) is ReplyIntent.DECLINE

    @pytest.mark.parametrize('text', ['', None, 'what time?', 'yes no', 'not sure', '?'])
    def test_ambiguous(self, text):
        assert classify_reply(text) is ReplyIntent.AMBIGUOUS

    def test_normalize(self):
        assert normalize_reply("  I'LL   Take it!! ") == 'ill take it'
