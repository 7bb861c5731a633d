"""
Tests for localized notices and the voice error hierarchy.
"""
import pytest

from core.notices import NOTICE_TEXT, notice_for
from models.schemas import Language
from voice.errors import (
    NetworkError, PermissionDenied, PlaybackFailed, RateLimitExceeded,
    RemoteServiceError, TurnInProgress, UnknownCaptureError, VoiceError, InternalError,
)


class TestNoticeFor:
    @pytest.mark.parametrize("language", list(Language))
    def test_every_kind_localized(self, language):
        for kind, texts in NOTICE_TEXT.items():
            assert texts[language], f"{kind} missing {language}"

    def test_permission_denied_arabic(self):
        n = notice_for(PermissionDenied(), Language.ARABIC)
        assert n.kind == "PermissionDenied"
        assert n.language == Language.ARABIC
        assert n.message == NOTICE_TEXT["PermissionDenied"][Language.ARABIC]
        assert not n.retryable

    def test_unknown_code_in_message(self):
        n = notice_for(UnknownCaptureError("bad-grammar"), Language.ENGLISH)
        assert n.message.endswith("bad-grammar")

    def test_configuration_error(self):
        n = notice_for(RemoteServiceError(None, "API key not configured"), Language.HINDI)
        assert n.kind == "RemoteServiceError"
        assert n.message == NOTICE_TEXT["ConfigurationError"][Language.HINDI]

    def test_internal_error_hides_cause(self):
        n = notice_for(InternalError("request", KeyError("choices")), Language.ARABIC)
        assert n.kind == "InternalError"
        assert n.message == NOTICE_TEXT["InternalError"][Language.ARABIC]
        assert "choices" not in n.message

    def test_unmapped_error_uses_str(self):
        class Odd(VoiceError):
            pass

        assert notice_for(Odd("odd failure"), Language.ENGLISH).message == "odd failure"


class TestErrors:
    def test_retryable_flags(self):
        assert NetworkError().retryable
        assert RemoteServiceError(502).retryable
        assert RemoteServiceError(429).retryable
        assert not RemoteServiceError(404).retryable
        assert not RemoteServiceError(None).retryable
        assert not PlaybackFailed("x").retryable

    def test_kind_is_class_name(self):
        assert RateLimitExceeded(10, 10).kind == "RateLimitExceeded"
        assert TurnInProgress("listening").kind == "TurnInProgress"
