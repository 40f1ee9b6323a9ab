import json
import logging
from logging.handlers import RotatingFileHandler
import os

import pytest
import yaml

import linear_tui as lt


def test_load_config_missing_file_returns_empty(tmp_path):
    cfg = lt.load_config(str(tmp_path / 'nope.yml'))
    assert cfg.api_key == ''


def test_save_and_load_api_key_round_trip(tmp_path):
    path = tmp_path / 'cfg' / 'config.yml'
    path.parent.mkdir()
    path.write_text('other: value\n', encoding='utf-8')
    lt.save_api_key(str(path), 'lin_api_abc')
    data = yaml.safe_load(path.read_text(encoding='utf-8'))
    assert data == {'other': 'value', 'api_key': 'lin_api_abc'}
    assert lt.load_config(str(path)).api_key == 'lin_api_abc'


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text('- just\n- a list\n', encoding='utf-8')
    with pytest.raises(ValueError):
        lt.load_config(str(path))


def test_resolve_api_key_precedence(monkeypatch, tmp_path):
    cfg = lt.Config(api_key='from-config')
    assert lt.resolve_api_key(cfg) == 'from-config'

    (tmp_path / '.env').write_text('# comment\nLINEAR_API_KEY="from-dotenv"\n', encoding='utf-8')
    assert lt.resolve_api_key(cfg) == 'from-dotenv'

    monkeypatch.setenv('LINEAR_API_KEY', 'from-env')
    assert lt.resolve_api_key(cfg) == 'from-env'


def test_resolve_api_key_missing():
    with pytest.raises(lt.ConfigError, match='linear init'):
        lt.resolve_api_key(lt.Config())


def test_defaults_round_trip_drops_empty_values():
    lt.save_defaults({'state': 'Todo', 'assignee': None, 'project': '', 'team': 'Engineering', 'title': 'x'})
    with open(lt.DEFAULTS_PATH, 'r', encoding='utf-8') as f:
        assert json.load(f) == {'state': 'Todo', 'team': 'Engineering'}
    assert lt.load_defaults() == {'state': 'Todo', 'team': 'Engineering'}


def test_load_defaults_tolerates_missing_or_corrupt_file():
    assert lt.load_defaults() == {}
    with open(lt.DEFAULTS_PATH, 'w', encoding='utf-8') as f:
        f.write('{not json')
    assert lt.load_defaults() == {}


def test_save_defaults_failure_is_reported(tmp_path, capsys):
    blocker = tmp_path / 'file'
    blocker.write_text('x', encoding='utf-8')
    lt.save_defaults({'state': 'Todo'}, path=str(blocker / 'defaults.json'))
    assert 'Failed to save default values' in capsys.readouterr().err


def test_setup_logging_writes_rotating_file():
    logger = lt.setup_logging('info')
    handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(handlers) == 1
    assert handlers[0].level == logging.INFO
    logger.info('hello from tests')
    handlers[0].flush()
    with open(lt.LOG_PATH, 'r', encoding='utf-8') as f:
        assert 'INFO hello from tests' in f.read()

    lt.setup_logging('bogus')
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.ERROR
    assert os.path.isfile(lt.LOG_PATH)


def test_load_config_malformed_yaml_is_value_error(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text('api_key: [unclosed\n', encoding='utf-8')
    with pytest.raises(ValueError, match='invalid YAML'):
        lt.load_config(str(path))
