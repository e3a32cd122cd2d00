"""Tests for configuration loading and precedence."""

import argparse

import pytest

from pg_rewarm import config as config_module
from pg_rewarm.config import Config, create_example_config
from pg_rewarm.manager import CacheConfig

SAMPLE_TOML = """
[database]
host = "db.internal"
port = 6432
user = "rewarm"
name = "app"

[rewarm]
image_format = "sqlite"
batch_size = 250
save_file = "/var/tmp/app.img"
concurrency = 4

[output]
verbose = true
"""


def make_args(**overrides):
    defaults = dict(
        host=None, port=None, user=None, password=None, dbname=None,
        image_format=None, batch_size=None, save_file=None, concurrency=None,
        connect_timeout=None, statement_timeout=None, verbose=False, quiet=False,
    )
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture(autouse=True)
def no_default_config_files(monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [])


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "pg_rewarm.toml"
    path.write_text(SAMPLE_TOML)
    return path


class TestConfigLoad:

    def test_defaults(self):
        config = Config.load(environ={})

        assert config.database.host == "localhost"
        assert config.database.port == 5432
        assert config.rewarm.image_format == "json"
        assert config.rewarm.batch_size == 1000
        assert config.rewarm.save_file == "pg_rewarm.img"
        assert config.validate() == []

    def test_toml_file(self, config_file):
        config = Config.load(str(config_file), environ={})

        assert config.database.host == "db.internal"
        assert config.database.port == 6432
        assert config.database.password == ""
        assert config.rewarm.image_format == "sqlite"
        assert config.rewarm.batch_size == 250
        assert config.rewarm.concurrency == 4
        assert config.rewarm.statement_timeout == 30000
        assert config.output.verbose is True
        assert config._config_file == config_file

    def test_search_paths(self, config_file, monkeypatch):
        monkeypatch.setattr(
            config_module, "CONFIG_SEARCH_PATHS",
            [config_file.parent / "absent.toml", config_file],
        )

        assert Config.load(environ={}).database.host == "db.internal"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.load(str(tmp_path / "nope.toml"), environ={})

    def test_environment_beats_file(self, config_file):
        environ = {"PGHOST": "replica", "PGPORT": "5433", "PGDATABASE": "reporting",
                   "PGUSER": "ops", "PGPASSWORD": "secret"}

        config = Config.load(str(config_file), environ=environ)

        assert config.database.host == "replica"
        assert config.database.port == 5433
        assert config.database.name == "reporting"
        assert config.database.user == "ops"
        assert config.database.password == "secret"
        assert config.rewarm.batch_size == 250

    def test_empty_environment_values_are_ignored(self):
        config = Config.load(environ={"PGHOST": "", "PGPORT": ""})
        assert config.database.host == "localhost"
        assert config.database.port == 5432

    def test_bad_pgport(self):
        with pytest.raises(ValueError, match="PGPORT"):
            Config.load(environ={"PGPORT": "fivefourthreetwo"})

    def test_args_beat_environment(self, config_file):
        config = Config.load(str(config_file), environ={"PGHOST": "replica"})
        config.override_from_args(make_args(host="primary", batch_size=10, image_format="json"))

        assert config.database.host == "primary"
        assert config.rewarm.batch_size == 10
        assert config.rewarm.image_format == "json"
        assert config.rewarm.concurrency == 4

    def test_quiet_overrides_verbose(self, config_file):
        config = Config.load(str(config_file), environ={})
        config.override_from_args(make_args(quiet=True))

        assert config.output.quiet
        assert not config.output.verbose


class TestConfigValidate:

    @pytest.mark.parametrize("section,name,value", [
        ("rewarm", "batch_size", 0),
        ("rewarm", "concurrency", -1),
        ("rewarm", "statement_timeout", "30s"),
        ("rewarm", "save_file", ""),
        ("database", "port", 70000),
        ("database", "host", ""),
    ])
    def test_invalid_values(self, section, name, value):
        config = Config()
        setattr(getattr(config, section), name, value)

        errors = config.validate()

        assert len(errors) == 1

    def test_to_cache_config(self):
        config = Config()
        config.database.name = "app"
        config.rewarm.concurrency = 3

        cache_config = config.to_cache_config()

        assert isinstance(cache_config, CacheConfig)
        assert cache_config.database == "app"
        assert cache_config.concurrency == 3
        assert cache_config.image_format == "json"

    def test_summary(self):
        summary = Config().summary()
        assert "Config: (defaults)" in summary
        assert "postgres@localhost:5432/postgres" in summary


class TestExampleConfig:

    def test_example_config_loads(self, tmp_path):
        path = create_example_config(str(tmp_path / "example.toml"))

        config = Config.load(str(path), environ={})

        assert config.validate() == []
        assert config.rewarm.image_format == "json"

    def test_refuses_to_overwrite(self, config_file):
        with pytest.raises(FileExistsError):
            create_example_config(str(config_file))
