"""
Utils for managing configuration.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Literal, Mapping, Any

import toml
from pydantic import TypeAdapter, ValidationError, Field

from udpmux.codec import MAX_DATAGRAM_SIZE

class ConfigError(Exception):
    """
    The given configuration is invalid
    """

Port = Annotated[int, Field(ge=0, le=65535)]

@dataclass(frozen=True)
class SessionConfig:
    """
    Everything needed to connect a session

    Attributes:
        host: name or address of the peer
        port: port of the peer
        bind: local "address:port" to bind to, instead of connecting to the
            peer. Port 0 picks any free port.
        verbose: initial value of the verbose flag
        strategy: 'thread' or 'event', see udpmux.transport
        max_datagram_size: largest frame that will be sent
    """
    host: str
    port: Port
    bind: str | None = None
    verbose: bool = False
    strategy: Literal['thread', 'event'] = 'thread'
    max_datagram_size: Annotated[int, Field(ge=1, le=65535)] = MAX_DATAGRAM_SIZE

    @property
    def bind_address(self) -> tuple[str, int] | None:
        """The bind option as an address tuple"""
        if self.bind is None:
            return None
        return parse_address(self.bind)

_config_adapter = TypeAdapter(SessionConfig)

def parse_address(address: str) -> tuple[str, int]:
    """
    Split "host:port", also accepting bracketed IPv6 hosts "[::1]:port"

    Raises:
        ConfigError: if there is no valid port
    """
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ConfigError(f'Missing port in address "{address}"')
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigError(f'Bad port in address "{address}"') from None
    if not 0 <= port_num <= 65535:
        raise ConfigError(f'Port out of range in address "{address}"')
    return host, port_num

def load_config(config: Mapping[str, Any] | None = None, mandatory=None
        ) -> SessionConfig:
    """
    Validate the configuration from the given mapping.

    Keys with a None value are treated as absent, so that unset command line
    options fall back to the defaults.
    """
    setup = {k: v for k, v in dict(config or {}).items() if v is not None}

    mandatory = set(mandatory or [])
    mandatory.update(('host', 'port'))
    for key in sorted(mandatory):
        if key not in setup or setup[key] == '':
            raise ConfigError(f'Missing "{key}"')

    try:
        session_config = _config_adapter.validate_python(setup)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    # Check early rather than at connection time
    session_config.bind_address # pylint: disable=pointless-statement

    logging.info('Peer is %s:%d', session_config.host, session_config.port)
    return session_config

def load_config_file(path: str) -> dict[str, Any]:
    """
    Read options from a toml file, from the [udpmux] table if there is one, else
    from the top level.
    """
    try:
        with open(path, encoding='utf8') as fd:
            doc = toml.load(fd)
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f'Cannot read config file {path}: {exc}') from exc
    return dict(doc.get('udpmux', doc))

def add_config_argument(parser) -> None:
    """Add the config file argument to the given parser"""
    parser.add_argument('-c', '--config',
        help='path to optional TOML configuration file')
