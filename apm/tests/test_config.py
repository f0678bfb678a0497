"""Tests for path and mode detection"""

import pytest

from apm.core import config


@pytest.fixture(autouse=True)
def fresh_mode(monkeypatch):
    monkeypatch.delenv('APM_BASE_DIR', raising=False)
    config.reset_cache()
    yield
    config.reset_cache()


class TestBaseDirOverride:

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv('APM_BASE_DIR', str(tmp_path))

        assert config.is_dev_mode() is True
        assert config.get_base_dir() == tmp_path
        assert config.get_db_path() == tmp_path / 'apm.db'
        assert config.get_image_file() == tmp_path / 'image.yml'
        assert config.get_containerfile_path() == tmp_path / 'Containerfile'

    def test_mode_is_cached(self, monkeypatch, tmp_path):
        monkeypatch.setenv('APM_BASE_DIR', str(tmp_path / 'first'))
        first = config.get_base_dir()
        monkeypatch.setenv('APM_BASE_DIR', str(tmp_path / 'second'))
        assert config.get_base_dir() == first

        config.reset_cache()
        assert config.get_base_dir() == tmp_path / 'second'


class TestLocalConfig:

    def test_local_file_overrides(self, monkeypatch, tmp_path):
        (tmp_path / 'bin').mkdir()
        (tmp_path / '.apm.local').write_text(
            "# dev checkout\n"
            f"base_dir={tmp_path / 'data'}\n"
            "image_file=/tmp/custom-image.yml\n"
            "atomic=yes\n"
        )
        monkeypatch.setattr('sys.argv', [str(tmp_path / 'bin' / 'apm')])

        assert config.get_db_path() == tmp_path / 'data' / 'apm.db'
        assert str(config.get_image_file()) == '/tmp/custom-image.yml'
        assert config.is_atomic() is True

    def test_atomic_off(self, monkeypatch, tmp_path):
        (tmp_path / 'bin').mkdir()
        (tmp_path / '.apm.local').write_text("atomic=no\n")
        monkeypatch.setattr('sys.argv', [str(tmp_path / 'bin' / 'apm')])

        assert config.is_atomic() is False
        assert config.get_base_dir() == config.DEV_BASE_DIR
