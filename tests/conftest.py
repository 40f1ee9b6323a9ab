import os
import sys

import pytest

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
ROOT_DIR = os.path.dirname(TESTS_DIR)
for path in (ROOT_DIR, TESTS_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

import linear_tui as lt  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_paths(monkeypatch, tmp_path):
    """Keep config, defaults, logs and .env lookups inside the test's tmp dir."""
    monkeypatch.setattr(lt, 'DEFAULT_CONFIG_PATH', str(tmp_path / 'config' / 'config.yml'))
    monkeypatch.setattr(lt, 'DEFAULTS_PATH', str(tmp_path / 'defaults.json'))
    monkeypatch.setattr(lt, 'LOG_PATH', str(tmp_path / 'logs' / 'linear_tui.log'))
    monkeypatch.delenv('LINEAR_API_KEY', raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    for h in list(lt.logger.handlers):
        lt.logger.removeHandler(h)
        h.close()
