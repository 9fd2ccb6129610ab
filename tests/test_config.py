"""Tests for settings and logging setup."""
import json
import logging

from hub.config import FeedSettings, MatchingSettings, Settings
from hub.logging_config import JsonFormatter, setup_logging


class TestSettings:

    def test_defaults(self):
        config = Settings()
        assert config.similarity.window == 50
        assert config.submission.min_text_length == 50
        assert config.clustering.min_batch_size == 3
        assert config.matching.category_weight == 50.0

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MATCHING_KEYWORD_TAG_WEIGHT", "3.5")
        monkeypatch.setenv("FEED_LIMIT", "10")

        assert MatchingSettings().keyword_tag_weight == 3.5
        assert FeedSettings().limit == 10


class TestLogging:

    def test_json_formatter_includes_extra(self):
        record = logging.LogRecord("hub.test", logging.INFO, __file__, 1, "ingested %s", (3,), None)
        record.channel = "LifeProTips"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "ingested 3"
        assert payload["level"] == "INFO"
        assert payload["channel"] == "LifeProTips"

    def test_setup_logging_replaces_handlers(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(level="debug", fmt="text", file=str(tmp_path / "hub.log"))
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 2
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
