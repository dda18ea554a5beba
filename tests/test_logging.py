"""
Tests for log redaction and the component filter.
"""
import logging

from core.logging import ComponentFilter, SecurityFilter


def make_record(msg, args=None, name="app", **extra):
    record = logging.LogRecord(name, logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bearer_tokens_and_jwts_are_redacted():
    record = make_record("Authorization: Bearer aaa.bbb.ccc sent eyJhbGciOi.eyJzdWIi.c2lnbmF0dXJl")
    SecurityFilter().filter(record)
    assert "aaa.bbb.ccc" not in record.msg
    assert "eyJhbGciOi" not in record.msg
    assert "Bearer [REDACTED]" in record.msg


def test_database_url_credentials_are_redacted():
    record = make_record("Connecting to postgresql+asyncpg://voice:hunter2@db:5432/voiceframe")
    SecurityFilter().filter(record)
    assert "hunter2" not in record.msg
    assert "db:5432/voiceframe" in record.msg


def test_sensitive_extra_fields_are_redacted():
    record = make_record("Session created", id_token="abc", api_key="sk-123", uid="user-1")
    SecurityFilter().filter(record)
    assert record.id_token == "[REDACTED]"
    assert record.api_key == "[REDACTED]"
    assert record.uid == "user-1"


def test_dict_args_are_sanitized():
    record = make_record("payload %(password)s %(name)s", {"password": "pw", "name": "ok"})
    SecurityFilter().filter(record)
    assert record.args == {"password": "[REDACTED]", "name": "ok"}


def test_component_filter_defaults():
    engine_record = make_record("SELECT 1", name="sqlalchemy.engine.Engine")
    app_record = make_record("hello", name="audio")
    tagged = make_record("hello", name="audio", component="storage")

    component_filter = ComponentFilter()
    for record in (engine_record, app_record, tagged):
        component_filter.filter(record)

    assert engine_record.component == "database"
    assert app_record.component == "app"
    assert tagged.component == "storage"
