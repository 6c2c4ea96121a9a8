import logging

from feedcore import logging_config
from feedcore.content_cache import ContentCache, DurableTier, MemoryTier
from feedcore.models import ContentItem
from feedcore.storage import MemoryStore


def test_log_format_env_overrides_tty_detection(monkeypatch):
    monkeypatch.setenv(logging_config.LOG_FORMAT_ENV, "json")
    assert logging_config._is_json_mode() is True
    monkeypatch.setenv(logging_config.LOG_FORMAT_ENV, "console")
    assert logging_config._is_json_mode() is False


def test_configure_logging_sets_levels():
    logging_config.configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

    logging_config.configure_logging("nonsense")
    assert logging.getLogger().level == logging.INFO


def test_component_messages_reach_stdlib_formatted(caplog, clock):
    logging_config.configure_logging("INFO")
    cache = ContentCache(
        memory=MemoryTier(clock=clock),
        durable=DurableTier(MemoryStore(clock), clock=clock),
        clock=clock,
    )
    with caplog.at_level(logging.INFO):
        cache.save_generated_content("u1", [ContentItem(id="g1", content="post")])

    messages = [r.getMessage() for r in caplog.records if r.name == "feedcore.content_cache"]
    assert any("Cached 1 generated items for u1" in m for m in messages)
