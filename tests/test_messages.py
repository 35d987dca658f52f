import pytest

import config
from errors import MissingTemplateError
from messages import MESSAGES, message, resolve_locale, voice_for
from models import Session


def test_resolve_locale_defaults_to_english():
    assert resolve_locale(Session(call_id="CA1")) == "en"
    assert resolve_locale(Session(call_id="CA1", language="es")) == "es"


def test_message_substitutes_placeholders():
    assert message("en", "verification_success", name="Tony") == (
        "Welcome Tony, you are verified. Transferring you now."
    )
    assert message("es", "verification_success", name="Tony").startswith("Bienvenido Tony")


def test_every_locale_has_the_same_keys():
    assert set(MESSAGES["en"]) == set(MESSAGES["es"])


def test_missing_key_raises():
    with pytest.raises(MissingTemplateError) as exc:
        message("en", "no_such_key")
    assert exc.value.key == "no_such_key"


def test_missing_locale_raises():
    with pytest.raises(MissingTemplateError):
        message("fr", "system_error")


def test_voice_for_locale():
    assert voice_for("en") == ("en-US", config.VOICE_EN)
    assert voice_for("es") == ("es-US", config.VOICE_ES)
    with pytest.raises(MissingTemplateError):
        voice_for("fr")
