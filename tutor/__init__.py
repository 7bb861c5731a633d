"""Tutor service client and prompts."""
from tutor.client import TutorRequestClient, format_messages, parse_tutor_payload
from tutor.prompts import SYSTEM_PROMPTS, WELCOME_MESSAGES, system_prompt, welcome_message

__all__ = [
    "TutorRequestClient", "format_messages", "parse_tutor_payload",
    "SYSTEM_PROMPTS", "WELCOME_MESSAGES", "system_prompt", "welcome_message",
]
