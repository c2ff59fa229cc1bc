"""
Command line interface to send and watch udpmux messages

    python -m udpmux listen -H 127.0.0.1 -p 9050 -b 0.0.0.0:9050
    python -m udpmux send -H 127.0.0.1 -p 9050 3 010203
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

import udpmux.cli
from udpmux.config import load_config, load_config_file, ConfigError, SessionConfig
from udpmux.lifecycle import TransportFault
from udpmux.message import NetworkMessage, MAX_IDENTIFIER
from udpmux.session import Session
from udpmux.codec import InvalidFrame

def make_parser() -> argparse.ArgumentParser:
    """Build the argument parser for both sub-commands"""
    parser = argparse.ArgumentParser(prog='udpmux')
    commands = parser.add_subparsers(dest='command', required=True)

    listen = commands.add_parser('listen',
            help='print every message received until interrupted')
    send = commands.add_parser('send', help='send one message and exit')
    send.add_argument('identifier', type=int, help='message identifier, 0-255')
    send.add_argument('content', nargs='?', default='',
            help='message content as a hexadecimal string')

    for sub in (listen, send):
        sub.add_argument('-H', '--host', help='peer name or address')
        sub.add_argument('-p', '--port', type=int, help='peer port')
        sub.add_argument('-b', '--bind',
                help='local address:port to bind to instead of connecting')
        sub.add_argument('-s', '--strategy', choices=['thread', 'event'],
                help='how to run the receive path (default: thread)')
        udpmux.cli.add_parser_arguments(sub)
    return parser

def get_config(args: argparse.Namespace) -> SessionConfig:
    """
    Merge the config file, if any, with command line options, the latter taking
    precedence
    """
    options = load_config_file(args.config) if args.config else {}
    for key in ('host', 'port', 'bind', 'strategy', 'verbose'):
        value = getattr(args, key)
        if value is not None:
            options[key] = value
    return load_config(options)

def _print_message(message: NetworkMessage) -> None:
    print(message.identifier, message.content.hex(), flush=True)

async def _listen_event(config: SessionConfig) -> TransportFault | None:
    done = asyncio.Event()
    session = Session.from_config(config, on_fault=lambda _fault: done.set())
    for identifier in range(MAX_IDENTIFIER + 1):
        session.subscribe(identifier, _print_message)
    with session:
        await done.wait()
    return session.fault

def listen(config: SessionConfig) -> int:
    """Print messages until interrupted or the socket fails"""
    if config.strategy == 'event':
        fault = asyncio.run(_listen_event(config))
    else:
        session = Session.from_config(config)
        for identifier in range(MAX_IDENTIFIER + 1):
            session.subscribe(identifier, _print_message)
        with session:
            fault = session.join()
    return 0 if fault is None else 1

def send(config: SessionConfig, identifier: int, content: str) -> int:
    """Send one message"""
    try:
        message = NetworkMessage(identifier, bytes.fromhex(content))
    except ValueError as exc:
        logging.error('Bad message: %s', exc)
        return 2
    # No event loop here, and replies are not waited for anyway
    with Session.from_config(replace(config, strategy='thread')) as session:
        session.send(message)
    return 0

def main(argv=None) -> int:
    """Entry point"""
    parser = make_parser()
    args = parser.parse_args(argv)
    try:
        udpmux.cli.setup(args.command, args.log_level, bool(args.verbose))
    except ValueError as exc:
        parser.error(str(exc))

    try:
        config = get_config(args)
        if args.command == 'send':
            return send(config, args.identifier, args.content)
        return listen(config)
    except ConfigError as exc:
        logging.error('Bad configuration: %s', exc)
        return 2
    except (TransportFault, InvalidFrame) as exc:
        logging.error('%s', exc)
        return 1
    except KeyboardInterrupt:
        logging.info('Interrupted')
        return 0

if __name__ == '__main__':
    sys.exit(main())
