"""
Common CLI features used by the command line entry points.
"""

import logging

import udpmux.config

def add_parser_arguments(parser):
    """Add generic arguments to the given parser"""
    parser.add_argument('--log-level',
        help='specify logging level (warning, info, debug)')
    parser.add_argument('-v', '--verbose', action='store_true', default=None,
        help='print debug information about sent and received messages')
    udpmux.config.add_config_argument(parser)

def get_level(loglevel=None) -> int:
    """
    Convert a level given as a name among 'debug', 'info', 'warning'
    (case-insensitive), an integer or integer-like string, or None (= warning)
    """
    if loglevel is None:
        return logging.WARNING
    try:
        return int(loglevel)
    except ValueError:
        pass
    level = {
        'debug': logging.DEBUG,
        'info': logging.INFO,
        'warning': logging.WARNING,
        'warn': logging.WARNING,
        'error': logging.ERROR,
        }.get(loglevel.lower())
    if level is None:
        raise ValueError(f'Unknown log level {loglevel!r}')
    return level

def setup(name, loglevel=None, verbose=False):
    """
    Common CLI setup steps

    Args:
        name: a string that will be added to each log line, identifying the
            process type
        loglevel: see `get_level`
        verbose: if True, lower the level to at least info so that verbose
            diagnostics are visible
    """
    log_format = (
        "%(asctime)s " # Time
        "%(levelname)s\t" # Level
        "%(name)s:%(filename)s:%(lineno)d\t" # Origin of log message inside process
        "["+name+" %(process)d] " # Identification of the process (type + pid)
        "%(message)s" # Message
    )
    level = get_level(loglevel)
    if verbose:
        level = min(level, logging.INFO)
    # Note the use of force ; this unregisters existing handlers that could have
    # been set before
    logging.basicConfig(level=level, format=log_format, force=True)
