import configparser
import logging
import textwrap
import unittest

import pytest

from qbittorrent_mover.config_manager import (
    TEMPLATE_PATH, ConfigValidator, ServerProfile, load_config, new_config_parser, parse_settings, update_config
)
from qbittorrent_mover.utils import ConfigError


def _parse(text: str) -> configparser.ConfigParser:
    config = new_config_parser()
    config.read_string(textwrap.dedent(text))
    return config


VALID_CONFIG = """
    [SETTINGS]
    cycle_delay = 30
    log_file = /var/log/qbittorrent-mover.log
    max_log_file_size = 5M
    max_parallel_moves = 2

    [SERVER:seedbox]
    qbit_url = https://seedbox.example:8080/
    username = admin
    password = p%ss
    verify_cert = false
    root_path = /mnt/staging
    path_prefix = /data/downloads

    [SERVER:seedbox:CATEGORIES]
    Movies = /mnt/media/movies
    tv = /mnt/media/tv
    music =

    [SERVER:nas]
    qbit_url = http://nas:8080
    username = u
    password = p

    [SERVER:nas:CATEGORIES]
    movies = /mnt/media/movies
"""


class TestParseSettings(unittest.TestCase):
    def test_parse_full_config(self):
        settings = parse_settings(_parse(VALID_CONFIG))

        self.assertEqual(settings.cycle_delay, 30)
        self.assertEqual(settings.log_file, "/var/log/qbittorrent-mover.log")
        self.assertEqual(settings.max_log_file_size, "5M")
        self.assertEqual(settings.max_parallel_moves, 2)
        self.assertEqual([s.name for s in settings.servers], ["seedbox", "nas"])

        seedbox = settings.servers[0]
        self.assertEqual(seedbox, ServerProfile(
            name="seedbox",
            qbit_url="https://seedbox.example:8080",
            username="admin",
            password="p%ss",
            categories={"Movies": "/mnt/media/movies", "tv": "/mnt/media/tv"},
            root_path="/mnt/staging",
            path_prefix="/data/downloads",
            verify_cert=False,
        ))

        nas = settings.servers[1]
        self.assertIsNone(nas.root_path)
        self.assertIsNone(nas.path_prefix)
        self.assertTrue(nas.verify_cert)

    def test_defaults_when_settings_missing(self):
        settings = parse_settings(_parse("""
            [SERVER:a]
            qbit_url = http://a
            username = u
            password = p
        """))
        self.assertEqual(settings.cycle_delay, 5)
        self.assertEqual(settings.log_file, "qbittorrent-mover.log")
        self.assertEqual(settings.max_log_file_size, "10M")
        self.assertEqual(settings.max_parallel_moves, 4)
        self.assertEqual(settings.servers[0].categories, {})

    def test_empty_root_and_prefix_are_unset(self):
        settings = parse_settings(_parse("""
            [SERVER:a]
            qbit_url = http://a
            username = u
            password = p
            root_path =
            path_prefix =
        """))
        self.assertIsNone(settings.servers[0].root_path)
        self.assertIsNone(settings.servers[0].path_prefix)

    def test_bad_number_raises_config_error(self):
        with self.assertRaises(ConfigError):
            parse_settings(_parse("""
                [SETTINGS]
                cycle_delay = soon
            """))

    def test_template_parses(self):
        config = new_config_parser()
        config.read(TEMPLATE_PATH, encoding='utf-8')
        settings = parse_settings(config)
        self.assertEqual(settings.cycle_delay, 5)
        self.assertEqual([s.name for s in settings.servers], ["local"])
        self.assertEqual(settings.servers[0].categories, {})


class TestConfigValidator(unittest.TestCase):
    def test_valid_config(self):
        validator = ConfigValidator(_parse(VALID_CONFIG))
        self.assertTrue(validator.validate())
        self.assertEqual(validator.errors, [])
        self.assertEqual(validator.warnings, [])

    def test_missing_settings_section(self):
        validator = ConfigValidator(_parse("""
            [SERVER:a]
            qbit_url = http://a
            username = u
            password = p
        """))
        self.assertFalse(validator.validate())
        self.assertTrue(any('[SETTINGS]' in e for e in validator.errors))

    def test_invalid_numbers(self):
        validator = ConfigValidator(_parse("""
            [SETTINGS]
            cycle_delay = 0
            max_parallel_moves = many
            max_log_file_size = 10X
        """))
        self.assertFalse(validator.validate())
        self.assertTrue(any('cycle_delay' in e for e in validator.errors))
        self.assertTrue(any('max_parallel_moves' in e for e in validator.errors))
        self.assertTrue(any('max_log_file_size' in e for e in validator.errors))

    def test_out_of_range_values_warn(self):
        validator = ConfigValidator(_parse("""
            [SETTINGS]
            cycle_delay = 100000
            max_parallel_moves = 65
        """))
        self.assertTrue(validator.validate())
        self.assertTrue(any('cycle_delay' in w for w in validator.warnings))
        self.assertTrue(any('max_parallel_moves' in w for w in validator.warnings))

    def test_server_problems(self):
        validator = ConfigValidator(_parse("""
            [SETTINGS]
            [SERVER:a]
            qbit_url = ftp://a
            username =
            password = p
            verify_cert = sometimes

            [SERVER:a:CATEGORIES]
            movies = /m
        """))
        self.assertFalse(validator.validate())
        self.assertTrue(any("'username'" in e for e in validator.errors))
        self.assertTrue(any('ftp://a' in e for e in validator.errors))
        self.assertTrue(any('verify_cert' in e for e in validator.errors))

    def test_orphan_categories_section(self):
        validator = ConfigValidator(_parse("""
            [SETTINGS]
            [SERVER:ghost:CATEGORIES]
            movies = /m
        """))
        self.assertFalse(validator.validate())
        self.assertTrue(any('ghost' in e for e in validator.errors))

    def test_warnings_do_not_fail_validation(self):
        validator = ConfigValidator(_parse("""
            [SETTINGS]
            [SERVER:a]
            qbit_url = http://a
            username = u
            password = p
            path_prefix = data/downloads

            [SERVER:a:CATEGORIES]
            movies = relative/movies
        """))
        self.assertTrue(validator.validate())
        self.assertTrue(any('path_prefix' in w for w in validator.warnings))
        self.assertTrue(any('relative/movies' in w for w in validator.warnings))

    def test_no_servers_and_no_categories_warn(self):
        validator = ConfigValidator(_parse("[SETTINGS]\n"))
        self.assertTrue(validator.validate())
        self.assertTrue(any('No [SERVER' in w for w in validator.warnings))

        validator = ConfigValidator(_parse("""
            [SETTINGS]
            [SERVER:a]
            qbit_url = http://a
            username = u
            password = p
        """))
        self.assertTrue(validator.validate())
        self.assertTrue(any('no categories' in w for w in validator.warnings))


@pytest.fixture(autouse=True)
def _quiet_logging():
    logging.disable(logging.CRITICAL)
    yield
    logging.disable(logging.NOTSET)


def test_update_config_creates_missing_file(tmp_path):
    config_path = tmp_path / "config.ini"
    update_config(str(config_path))
    assert config_path.read_text(encoding='utf-8') == TEMPLATE_PATH.read_text(encoding='utf-8')


def test_update_config_adds_missing_options(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text(textwrap.dedent("""
        [SETTINGS]
        # my delay
        cycle_delay = 30

        [SERVER:box]
        qbit_url = http://box:8080
        username = me
        password = secret

        [SERVER:box:CATEGORIES]
        Movies = /mnt/movies
    """), encoding='utf-8')

    update_config(str(config_path))

    text = config_path.read_text(encoding='utf-8')
    assert "# my delay" in text
    assert "Movies = /mnt/movies" in text
    assert "SERVER:local" not in text

    config = load_config(str(config_path))
    assert config['SETTINGS']['cycle_delay'] == '30'
    assert config['SETTINGS']['max_log_file_size'] == '10M'
    assert config['SETTINGS']['max_parallel_moves'] == '4'
    assert config['SERVER:box']['password'] == 'secret'
    assert config['SERVER:box']['verify_cert'] == 'true'
    assert config.has_option('SERVER:box', 'root_path')
    assert dict(config['SERVER:box:CATEGORIES']) == {'Movies': '/mnt/movies'}

    backups = list((tmp_path / "backup").iterdir())
    assert len(backups) == 1
    assert "password = secret" in backups[0].read_text(encoding='utf-8')


def test_update_config_leaves_complete_file_alone(tmp_path):
    config_path = tmp_path / "config.ini"
    update_config(str(config_path))
    before = config_path.read_text(encoding='utf-8')

    update_config(str(config_path))

    assert config_path.read_text(encoding='utf-8') == before
    assert not (tmp_path / "backup").exists()


def test_update_config_without_template_exits(tmp_path):
    with pytest.raises(SystemExit):
        update_config(str(tmp_path / "config.ini"), template_path=str(tmp_path / "missing.template"))


def test_load_config_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        load_config(str(tmp_path / "nope.ini"))
    assert excinfo.value.code == 1


def test_load_config_keeps_key_case_and_percent(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[SERVER:a]\npassword = 100%\n[SERVER:a:CATEGORIES]\nTV = /tv\n", encoding='utf-8')
    config = load_config(str(config_path))
    assert config['SERVER:a']['password'] == '100%'
    assert config.has_option('SERVER:a:CATEGORIES', 'TV')
