"""Per-locale message templates and voice lookup.

A session's language is resolved once by the language-selection step. Every
later prompt is looked up through ``message()`` with the resolved locale.
"""

import logging

import config
from errors import MissingTemplateError

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"

# Keypad digit → locale for the language menu
LANGUAGE_DIGITS = {"1": "en", "2": "es"}

MESSAGES = {
    "en": {
        "mini_miranda": "This call may be monitored or recorded for quality and training purposes.",
        "language_prompt": "For English, press 1. Para Español, presiona 2.",
        "csr_notice": "Please note that there are currently no customer service representatives available.",
        "question_prompt": "Please briefly describe what you need help with after the beep, then press pound.",
        "question_menu": "For general questions, press 1. For questions about your account, press 2.",
        "invalid_language": "Invalid selection. Please try again.",
        "invalid_question": "Invalid selection. Please try again.",
        "ssn_prompt": "Please enter the last four digits of your social security number using your phone keypad.",
        "dob_prompt": "Enter your date of birth as month month day day year year year year using your phone keypad.",
        "zip_prompt": "Enter your five digit zip code using your phone keypad.",
        "invalid_ssn": "That was not four digits. Please try again using your keypad.",
        "invalid_dob": "That date of birth was not valid. Please try again using your keypad.",
        "invalid_zip": "That zip code did not look right. Please try again using your keypad.",
        "verification_success": "Welcome {name}, you are verified. Transferring you now.",
        "verification_failed": "Those details did not match our records. Please try again.",
        "transferring": "Please hold while we transfer your call.",
        "too_many_attempts": "Too many invalid attempts. Goodbye.",
        "system_error": "An error occurred. Please try again later.",
        "no_input": "Sorry, I did not get that.",
    },
    "es": {
        "mini_miranda": "Esta llamada puede ser monitoreada o grabada para propósitos de calidad y entrenamiento.",
        "language_prompt": "For English, press 1. Para Español, presiona 2.",
        "csr_notice": "Por favor tenga en cuenta que actualmente no hay representantes de servicio al cliente disponibles.",
        "question_prompt": "Por favor describa brevemente en qué necesita ayuda después del tono, luego presiona numeral.",
        "question_menu": "Para preguntas generales, presione 1. Para preguntas sobre su cuenta, presione 2.",
        "invalid_language": "Selección inválida. Por favor intente de nuevo.",
        "invalid_question": "Selección inválida. Por favor intente de nuevo.",
        "ssn_prompt": "Por favor ingrese los últimos cuatro dígitos de su número de seguro social usando el teclado de su teléfono.",
        "dob_prompt": "Ingrese su fecha de nacimiento como mes mes día día año año año año usando el teclado de su teléfono.",
        "zip_prompt": "Ingrese su código postal de cinco dígitos usando el teclado de su teléfono.",
        "invalid_ssn": "Eso no fueron cuatro dígitos. Por favor intente de nuevo usando su teclado.",
        "invalid_dob": "Esa fecha de nacimiento no fue válida. Por favor intente de nuevo usando su teclado.",
        "invalid_zip": "Ese código postal no se ve correcto. Por favor intente de nuevo usando su teclado.",
        "verification_success": "Bienvenido {name}, está verificado. Transfiriéndolo ahora.",
        "verification_failed": "Esos detalles no coincidieron con nuestros registros. Por favor intente de nuevo.",
        "transferring": "Por favor manténgase en línea mientras transferimos su llamada.",
        "too_many_attempts": "Demasiados intentos inválidos. Adiós.",
        "system_error": "Ocurrió un error. Por favor intente de nuevo más tarde.",
        "no_input": "Lo siento, no recibí eso.",
    },
}

# locale → (language code, voice)
VOICES = {
    "en": ("en-US", config.VOICE_EN),
    "es": ("es-US", config.VOICE_ES),
}


def resolve_locale(session):
    """Return the session's language, or the default locale when unset."""
    return session.language or DEFAULT_LOCALE


def message(locale, key, **subs):
    """Look up a template and substitute ``{placeholder}`` values.

    Raises MissingTemplateError when the locale or key is not configured.
    """
    try:
        template = MESSAGES[locale][key]
    except KeyError:
        logger.error(f"message: no template key={key} locale={locale}")
        raise MissingTemplateError(locale, key) from None
    if not subs:
        return template
    return template.format(**subs)


def voice_for(locale):
    """Return (language_code, voice) for a locale."""
    try:
        return VOICES[locale]
    except KeyError:
        logger.error(f"voice_for: no voice for locale={locale}")
        raise MissingTemplateError(locale, "voice") from None
