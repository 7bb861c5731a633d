"""
Localized notices for failed or rejected turns.
"""
from __future__ import annotations

from models.schemas import Language, Notice
from voice.errors import RemoteServiceError, UnknownCaptureError, VoiceError


NOTICE_TEXT: dict[str, dict[Language, str]] = {
    "PermissionDenied": {
        Language.ENGLISH: "Microphone permission denied. Please allow access in browser settings.",
        Language.ARABIC: "تم رفض إذن الميكروفون. يرجى السماح بالوصول في إعدادات المتصفح.",
        Language.HINDI: "माइक्रोफ़ोन अनुमति अस्वीकार कर दी गई। कृपया ब्राउज़र सेटिंग्स में अनुमति दें।",
    },
    "AudioCaptureUnavailable": {
        Language.ENGLISH: "Microphone access denied. Please check your settings.",
        Language.ARABIC: "لا يمكن الوصول إلى الميكروفون. يرجى التحقق من الإعدادات.",
        Language.HINDI: "माइक्रोफ़ोन तक पहुंच नहीं मिल सकी। कृपया सेटिंग्स जांचें।",
    },
    "NetworkUnavailable": {
        Language.ENGLISH: "Network error. Please check your internet connection.",
        Language.ARABIC: "خطأ في الشبكة. يرجى التحقق من اتصالك بالإنترنت.",
        Language.HINDI: "नेटवर्क त्रुटि। कृपया अपने इंटरनेट कनेक्शन की जांच करें।",
    },
    "UnknownCaptureError": {
        Language.ENGLISH: "Speech recognition error: {code}",
        Language.ARABIC: "خطأ في التعرف على الصوت: {code}",
        Language.HINDI: "भाषण पहचान त्रुटि: {code}",
    },
    "UnsupportedEnvironment": {
        Language.ENGLISH: "Voice features are not supported in this browser. Please use Chrome, Edge, or Safari.",
        Language.ARABIC: "الميزات الصوتية غير مدعومة في هذا المتصفح. يرجى استخدام Chrome أو Edge أو Safari.",
        Language.HINDI: "इस ब्राउज़र में आवाज़ सुविधाएँ समर्थित नहीं हैं। कृपया Chrome, Edge या Safari का उपयोग करें।",
    },
    "PlaybackFailed": {
        Language.ENGLISH: "Error occurred while speaking text.",
        Language.ARABIC: "حدث خطأ في قراءة النص.",
        Language.HINDI: "पाठ पढ़ने में त्रुटि हुई।",
    },
    "NetworkError": {
        Language.ENGLISH: "Failed to connect to AI service. Please try again.",
        Language.ARABIC: "حدث خطأ في الاتصال بخدمة الذكاء الاصطناعي. يرجى المحاولة مرة أخرى.",
        Language.HINDI: "AI सेवा से कनेक्ट करने में त्रुटि हुई। कृपया पुनः प्रयास करें।",
    },
    "RemoteServiceError": {
        Language.ENGLISH: "The AI tutor is unavailable right now. Please try again.",
        Language.ARABIC: "المدرس الذكي غير متاح حالياً. يرجى المحاولة مرة أخرى.",
        Language.HINDI: "AI शिक्षक अभी उपलब्ध नहीं है। कृपया पुनः प्रयास करें।",
    },
    "ConfigurationError": {
        Language.ENGLISH: "API key not configured. Please check your environment settings.",
        Language.ARABIC: "مفتاح API غير مُكوّن. يرجى التحقق من إعدادات البيئة.",
        Language.HINDI: "API कुंजी कॉन्फ़िगर नहीं है। कृपया पर्यावरण सेटिंग्स जांचें।",
    },
    "RateLimitExceeded": {
        Language.ENGLISH: "You've reached your daily limit. Please upgrade to Premium or try again tomorrow.",
        Language.ARABIC: "لقد وصلت إلى حدك اليومي. يرجى الترقية إلى بريميوم أو المحاولة مرة أخرى غداً.",
        Language.HINDI: "आपने अपनी दैनिक सीमा पूरी कर ली है। कृपया प्रीमियम में अपग्रेड करें या कल फिर कोशिश करें।",
    },
    "TurnInProgress": {
        Language.ENGLISH: "Please wait for the current answer to finish.",
        Language.ARABIC: "يرجى الانتظار حتى تنتهي الإجابة الحالية.",
        Language.HINDI: "कृपया वर्तमान उत्तर पूरा होने तक प्रतीक्षा करें।",
    },
    "InternalError": {
        Language.ENGLISH: "Something went wrong. Please try again.",
        Language.ARABIC: "حدث خطأ ما. يرجى المحاولة مرة أخرى.",
        Language.HINDI: "कुछ गलत हो गया। कृपया पुनः प्रयास करें।",
    },
}


def notice_for(error: VoiceError, language: Language) -> Notice:
    kind = error.kind
    key = kind
    if isinstance(error, RemoteServiceError) and error.is_configuration_error:
        key = "ConfigurationError"

    texts = NOTICE_TEXT.get(key)
    if texts is None:
        message = str(error)
    else:
        message = texts.get(language, texts[Language.ENGLISH])
        if isinstance(error, UnknownCaptureError):
            message = message.format(code=error.code)

    return Notice(kind=kind, message=message, language=language, retryable=error.retryable)
