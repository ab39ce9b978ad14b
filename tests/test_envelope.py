import pytest

from roomrelay.constants import (
    ENVELOPE_VERSION,
    EV_HELLO,
    K_BODY,
    K_EVENT,
    K_ID,
    K_TS,
    K_V,
)
from roomrelay.envelope import decode, encode, make_envelope, validate_envelope


def test_validate_accepts_make_envelope() -> None:
    env = make_envelope(EV_HELLO, body={"mode": "normal", "nickName": "alice"})
    validate_envelope(env)


def test_encoded_envelope_survives_the_wire() -> None:
    env = make_envelope("chat message", body="hello")
    decoded = decode(encode(env))
    assert decoded == env
    validate_envelope(decoded)


def test_validate_allows_omitted_body() -> None:
    env = make_envelope("roomJoin")
    assert K_BODY not in env
    validate_envelope(env)


def test_validate_allows_unknown_extension_keys() -> None:
    env = make_envelope("roomJoin")
    env[64] = {"future": True}
    validate_envelope(env)


def test_validate_rejects_non_map() -> None:
    with pytest.raises(TypeError):
        validate_envelope([ENVELOPE_VERSION, "chat message"])


def test_validate_rejects_missing_required_key() -> None:
    env = make_envelope("chat message")
    env.pop(K_TS)
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_wrong_version() -> None:
    env = make_envelope("chat message")
    env[K_V] = ENVELOPE_VERSION + 1
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_non_integer_keys() -> None:
    env = make_envelope("chat message")
    env["1"] = env.pop(K_EVENT)
    with pytest.raises(TypeError):
        validate_envelope(env)


def test_validate_rejects_empty_event_name() -> None:
    env = make_envelope("chat message")
    env[K_EVENT] = ""
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_wrong_field_types() -> None:
    env = make_envelope("chat message")
    env[K_ID] = "not-bytes"
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope("chat message")
    env[K_TS] = "not-int"
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope("chat message")
    env[K_EVENT] = 7
    with pytest.raises(TypeError):
        validate_envelope(env)
