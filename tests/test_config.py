"""Tests for configuration loading and validation."""

import textwrap

import pytest

from webspider.errors import ConfigError
from webspider.utils.config import (
    DEFAULT_USER_AGENT,
    ConfigManager,
    config_from_dict,
    load_config,
)


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(text))
    return path


class TestConfigManager:

    def test_loads_yaml(self, tmp_path):
        path = write_config(tmp_path, """
            crawler:
              origin_url: "https://example.com/"
              max_depth: 3
              concurrency_limit: 16
              allowed_domains: [example.com]
            database:
              type: file
              file:
                data_directory: out
            logging:
              level: DEBUG
        """)
        config = ConfigManager(str(path)).load_config()

        assert config.crawler.origin_url == "https://example.com/"
        assert config.crawler.max_depth == 3
        assert config.crawler.concurrency_limit == 16
        assert config.crawler.allowed_domains == ["example.com"]
        assert config.database.type == 'file'
        assert config.database.file == {'data_directory': 'out'}
        assert config.logging.level == 'DEBUG'

    def test_defaults(self, tmp_path):
        path = write_config(tmp_path, """
            crawler:
              origin_url: "http://example.com"
              max_depth: 1
        """)
        config = ConfigManager(str(path)).load_config()

        assert config.crawler.concurrency_limit == 8
        assert config.crawler.max_retries == 2
        assert config.crawler.respect_robots_txt is True
        assert config.crawler.user_agent == DEFAULT_USER_AGENT
        assert config.database.type == 'sqlite'
        assert config.database.database_name == 'crawl'
        assert config.monitoring.metrics_enabled is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigManager(str(tmp_path / "nope.yaml")).load_config()

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path, "crawler: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            ConfigManager(str(path)).load_config()

    def test_empty_file(self, tmp_path):
        path = write_config(tmp_path, "")
        with pytest.raises(ConfigError, match="Empty"):
            ConfigManager(str(path)).load_config()

    def test_config_before_load_raises(self):
        with pytest.raises(ConfigError):
            ConfigManager("config.yaml").config

    def test_crawler_config_is_read_only(self, tmp_path):
        path = write_config(tmp_path, """
            crawler:
              origin_url: "http://example.com/"
              max_depth: 1
        """)
        config = ConfigManager(str(path)).load_config()
        with pytest.raises(AttributeError):
            config.crawler.max_depth = 5

    def test_load_config_reads_each_path_independently(self, tmp_path):
        first = tmp_path / "first.yaml"
        second = tmp_path / "second.yaml"
        first.write_text("crawler:\n  origin_url: http://one.test/\n  max_depth: 1\n")
        second.write_text("crawler:\n  origin_url: http://two.test/\n  max_depth: 2\n")

        assert load_config(str(first)).crawler.origin_url == "http://one.test/"
        assert load_config(str(second)).crawler.max_depth == 2


class TestValidation:

    def crawler(self, **overrides):
        section = {'origin_url': "http://example.com/", 'max_depth': 2}
        section.update(overrides)
        return {'crawler': section}

    def test_valid(self):
        assert config_from_dict(self.crawler()).crawler.max_depth == 2

    def test_missing_crawler_section(self):
        with pytest.raises(ConfigError, match="crawler"):
            config_from_dict({'database': {}})

    @pytest.mark.parametrize("origin", ["example.com", "ftp://example.com/", "", "http://"])
    def test_origin_must_be_absolute_http(self, origin):
        with pytest.raises(ConfigError, match="origin_url"):
            config_from_dict(self.crawler(origin_url=origin))

    @pytest.mark.parametrize("depth", [0, -1])
    def test_max_depth_must_be_positive(self, depth):
        with pytest.raises(ConfigError, match="max_depth"):
            config_from_dict(self.crawler(max_depth=depth))

    @pytest.mark.parametrize("key, value", [
        ('concurrency_limit', 0),
        ('request_timeout', 0),
        ('max_retries', -1),
        ('max_redirects', -1),
        ('politeness_delay', -0.5),
        ('robots_cache_ttl', 0),
    ])
    def test_out_of_range_values(self, key, value):
        with pytest.raises(ConfigError):
            config_from_dict(self.crawler(**{key: value}))

    @pytest.mark.parametrize("key, value", [
        ('origin_url', 42),
        ('max_depth', "2"),
        ('concurrency_limit', "eight"),
        ('request_timeout', "30s"),
        ('max_retries', 1.5),
        ('max_redirects', True),
        ('backoff_base', [0.5]),
        ('politeness_delay', "slow"),
        ('robots_cache_ttl', "1h"),
        ('respect_robots_txt', "yes"),
        ('allowed_domains', "example.com"),
        ('blocked_domains', [1, 2]),
    ])
    def test_wrong_types_are_config_errors(self, key, value):
        with pytest.raises(ConfigError, match=key):
            config_from_dict(self.crawler(**{key: value}))

    @pytest.mark.parametrize("section, values", [
        ('database', {'database_name': 7}),
        ('monitoring', {'prometheus_port': "8000"}),
        ('monitoring', {'report_interval': "often"}),
        ('logging', {'level': 10}),
    ])
    def test_wrong_types_in_other_sections(self, section, values):
        data = self.crawler()
        data[section] = values
        with pytest.raises(ConfigError):
            config_from_dict(data)

    def test_unknown_key_is_rejected(self):
        with pytest.raises(ConfigError, match="crawler"):
            config_from_dict(self.crawler(max_dept=3))

    def test_unknown_database_type(self):
        data = self.crawler()
        data['database'] = {'type': 'mongodb'}
        with pytest.raises(ConfigError, match="Database type"):
            config_from_dict(data)

    def test_section_must_be_mapping(self):
        data = self.crawler()
        data['logging'] = "verbose"
        with pytest.raises(ConfigError, match="logging"):
            config_from_dict(data)
