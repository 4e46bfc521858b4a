"""Classification of free-text driver SMS replies."""
import enum
import re


class ReplyIntent(enum.Enum):
    ACCEPT = 'accept'
    DECLINE = 'decline'
    AMBIGUOUS = 'ambiguous'


ACCEPT_PHRASES = frozenset({
    'yes', 'y', 'yeah', 'yep', 'yup', 'ok', 'okay', 'k', 'sure', 'accept', 'accepted',
    'confirm', 'confirmed', 'i accept', 'i will', 'ill take it', 'i will take it',
    'take it', 'count me in', 'on it', 'absolutely', 'definitely',
})

DECLINE_PHRASES = frozenset({
    'no', 'n', 'nope', 'nah', 'decline', 'declined', 'reject', 'pass', 'skip',
    'cant', 'can not', 'cannot', 'not available', 'unavailable', 'busy',
    'no thanks', 'no thank you', 'not today', 'i cant', 'i decline',
})

_ACCEPT_WORDS = frozenset({'yes', 'y', 'yeah', 'yep', 'yup', 'ok', 'okay', 'sure', 'accept', 'confirm'})
_DECLINE_WORDS = frozenset({
    'no', 'n', 'nope', 'nah', 'not', 'dont', 'decline', 'reject', 'pass', 'cant', 'cannot', 'unavailable',
})


def normalize_reply(text):
    """Lowercase, drop punctuation (apostrophes vanish) and collapse whitespace."""
    if not text:
        return ''
    text = text.lower().replace("'", '').replace('’', '')
    text = re.sub(r'[^a-z0-9\s]', ' ', text)
    return ' '.join(text.split())


def classify_reply(text):
    """
    Map a driver's reply to an intent

    Whole-message phrases win; otherwise a reply whose words point only one way
    is classified that way. Mixed or unknown replies are AMBIGUOUS.
    """
    normalized = normalize_reply(text)
    if not normalized:
        return ReplyIntent.AMBIGUOUS

    if normalized in ACCEPT_PHRASES:
        return ReplyIntent.ACCEPT
    if normalized in DECLINE_PHRASES:
        return ReplyIntent.DECLINE

    words = set(normalized.split())
    says_accept = bool(words & _ACCEPT_WORDS)
    says_decline = bool(words & _DECLINE_WORDS)
    if says_accept and not says_decline:
        return ReplyIntent.ACCEPT
    if says_decline and not says_accept:
        return ReplyIntent.DECLINE
    return ReplyIntent.AMBIGUOUS
