"""
Centralized error codes and user-facing messages for Amparo.

Error codes are constants that map to translatable message strings. The
builder returns structured error dicts used both by the REST response
envelope and by the realtime `error` event.

Portuguese is the product language; English is kept for API clients.
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Error Code Constants
# =============================================================================

AUTH_REQUIRED = "AUTH_REQUIRED"
NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
FORBIDDEN = "FORBIDDEN"
MESSAGE_FAILED = "MESSAGE_FAILED"
AI_UNAVAILABLE = "AI_UNAVAILABLE"
CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
EMPTY_MESSAGE = "EMPTY_MESSAGE"
MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
RATE_LIMITED = "RATE_LIMITED"

# =============================================================================
# i18n Message Registry
#
# Maps (error_code, language) -> message string. Falls back to Portuguese
# when the requested language is missing.
# =============================================================================

_ERROR_MESSAGES: dict[str, dict[str, str]] = {
    AUTH_REQUIRED: {
        "pt": "Autenticação necessária.",
        "en": "Authentication is required.",
    },
    NOT_FOUND: {
        "pt": "Recurso não encontrado.",
        "en": "The requested resource was not found.",
    },
    VALIDATION_ERROR: {
        "pt": "Dados inválidos. Verifique sua solicitação.",
        "en": "Invalid input. Please check your request.",
    },
    INTERNAL_ERROR: {
        "pt": "Erro interno do servidor.",
        "en": "An internal error occurred. Please try again.",
    },
    FORBIDDEN: {
        "pt": "Você não tem permissão para esta ação.",
        "en": "You do not have permission to perform this action.",
    },
    MESSAGE_FAILED: {
        "pt": "Erro ao processar mensagem. Por favor, tente novamente.",
        "en": "Failed to process message. Please try again.",
    },
    AI_UNAVAILABLE: {
        "pt": "Desculpe, tive um problema ao processar sua mensagem. Por favor, tente novamente.",
        "en": "Sorry, the assistant is unavailable right now. Please try again.",
    },
    CONVERSATION_NOT_FOUND: {
        "pt": "Conversa não encontrada.",
        "en": "Conversation not found.",
    },
    EMPTY_MESSAGE: {
        "pt": "Mensagem vazia.",
        "en": "Message is empty.",
    },
    MESSAGE_TOO_LONG: {
        "pt": "Mensagem muito longa.",
        "en": "Message is too long.",
    },
    RATE_LIMITED: {
        "pt": "Muitas requisições, tente novamente mais tarde.",
        "en": "Too many requests. Please try again later.",
    },
}

_DEFAULT_LANG = "pt"


# =============================================================================
# Error Response Builder
# =============================================================================


def get_error_message(code: str, lang: str = _DEFAULT_LANG) -> str:
    """
    Get a translated error message for a given error code.

    Falls back to Portuguese if the requested language is not available,
    and to a generic message if the error code is unknown.
    """
    messages = _ERROR_MESSAGES.get(code, {})
    return messages.get(lang, messages.get(_DEFAULT_LANG, "Ocorreu um erro."))


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    lang: str = _DEFAULT_LANG,
) -> dict[str, Any]:
    """
    Build a structured error dict: {"code": str, "message": str, "details"?: dict}.

    If no message is provided, the translated message for the code and
    language is used.
    """
    resolved_message = message if message is not None else get_error_message(code, lang)
    error: dict[str, Any] = {
        "code": code,
        "message": resolved_message,
    }
    if details is not None:
        error["details"] = details
    return error


__all__ = [
    "AI_UNAVAILABLE",
    "AUTH_REQUIRED",
    "CONVERSATION_NOT_FOUND",
    "EMPTY_MESSAGE",
    "FORBIDDEN",
    "INTERNAL_ERROR",
    "MESSAGE_FAILED",
    "MESSAGE_TOO_LONG",
    "NOT_FOUND",
    "RATE_LIMITED",
    "VALIDATION_ERROR",
    "build_error_response",
    "get_error_message",
]
