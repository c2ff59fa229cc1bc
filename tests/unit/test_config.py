"""
Unit tests for configuration loading
"""

import pytest

from udpmux.config import (load_config, load_config_file, parse_address,
        ConfigError, SessionConfig)

def test_defaults():
    """
    Only host and port are needed, None values are ignored
    """
    config = load_config({'host': 'localhost', 'port': 9050, 'bind': None})
    assert config == SessionConfig('localhost', 9050)
    assert config.strategy == 'thread'
    assert not config.verbose
    assert config.bind_address is None

@pytest.mark.parametrize('options', [
    {'port': 9050},
    {'host': 'localhost'},
    {'host': '', 'port': 9050},
    {'host': 'localhost', 'port': 70000},
    {'host': 'localhost', 'port': 9050, 'strategy': 'fork'},
    {'host': 'localhost', 'port': 9050, 'bind': 'nope'},
    {'host': 'localhost', 'port': 9050, 'bind': '0.0.0.0:x'},
    ])
def test_invalid(options):
    """
    Missing or invalid options are reported as ConfigError
    """
    with pytest.raises(ConfigError):
        load_config(options)

def test_mandatory():
    """
    Extra mandatory keys can be requested
    """
    with pytest.raises(ConfigError):
        load_config({'host': 'localhost', 'port': 1}, mandatory=['bind'])

def test_parse_address():
    """
    Addresses are split on the last colon, brackets are removed
    """
    assert parse_address('0.0.0.0:9050') == ('0.0.0.0', 9050)
    assert parse_address('[::1]:0') == ('::1', 0)
    assert parse_address(':80') == ('', 80)

def test_config_file(tmp_path):
    """
    Options are read from the udpmux table, or the top level
    """
    path = tmp_path / 'udpmux.toml'
    path.write_text('[udpmux]\nhost = "10.0.0.2"\nport = 9050\nverbose = true\n')
    config = load_config(load_config_file(str(path)))
    assert config.host == '10.0.0.2'
    assert config.verbose

    path.write_text('host = "10.0.0.3"\nport = 9051\nstrategy = "event"\n')
    config = load_config(load_config_file(str(path)))
    assert (config.host, config.port, config.strategy) == ('10.0.0.3', 9051, 'event')

    with pytest.raises(ConfigError):
        load_config_file(str(tmp_path / 'missing.toml'))

    path.write_text('host = \n')
    with pytest.raises(ConfigError):
        load_config_file(str(path))
