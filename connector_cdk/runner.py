# Standard Library
import argparse
import json
import sys

# Local
from connector_cdk.errors import ConfigurationError
from connector_cdk.protocol import AirbyteConnectionStatus, AirbyteConnectionStatusMessage
from connector_cdk.utils import (
    load_json,
    redact_config,
    secret_values,
    validate_config,
    with_defaults,
)


class Runner(object):

    def __init__(self, logger):
        self.logger = logger

    def parser(self):
        raise NotImplementedError

    def run(self, argv=None):
        args = self.parser().parse_args(argv)
        return args.func(args)

    def load_config(self, path, spec):
        config = with_defaults(load_json(path), spec)
        # Mask secrets in every log line, not only in the logged config
        for secret in secret_values(config, spec):
            self.logger.add_secret(secret)
        return validate_config(config, spec)

    def add_config_argument(self, parser):
        parser.add_argument('--config', required=True, help='Config file (JSON)')

    def check_with(self, connector, args):
        spec = connector.spec()
        try:
            config = self.load_config(args.config, spec)
        except ConfigurationError as e:
            status = AirbyteConnectionStatusMessage(AirbyteConnectionStatus.FAILED, str(e))
        else:
            status = connector.check(config)
        if status.message:
            status.message = self.logger.mask(status.message)
        self.logger.write(status)


class AirbyteSourceRunner(Runner):

    def __init__(self, logger, source):
        super().__init__(logger)
        self.source = source

    def parser(self):
        parser = argparse.ArgumentParser(prog=self.source.name)
        subparsers = parser.add_subparsers(dest='command', required=True)

        spec_parser = subparsers.add_parser('spec', help='Output the connector specification')
        spec_parser.set_defaults(func=self.spec)

        check_parser = subparsers.add_parser('check', help='Check the connection')
        self.add_config_argument(check_parser)
        check_parser.set_defaults(func=self.check)

        discover_parser = subparsers.add_parser('discover', help='Output the catalog')
        self.add_config_argument(discover_parser)
        discover_parser.set_defaults(func=self.discover)

        read_parser = subparsers.add_parser('read', help='Read records')
        self.add_config_argument(read_parser)
        read_parser.add_argument('--catalog', required=True, help='Configured catalog file (JSON)')
        read_parser.add_argument('--state', help='State file (JSON)')
        read_parser.set_defaults(func=self.read)

        return parser

    def spec(self, args): # pylint: disable=unused-argument
        self.logger.write(self.source.spec())

    def check(self, args):
        self.check_with(self.source, args)

    def discover(self, args):
        config = self.load_config(args.config, self.source.spec())
        self.logger.write(self.source.discover(config))

    def read(self, args):
        spec = self.source.spec()
        config = self.load_config(args.config, spec)
        catalog = load_json(args.catalog)
        self.logger.info('Config: %s', json.dumps(redact_config(config, spec)))
        self.logger.info('Catalog: %s', json.dumps(catalog))

        state = None
        if args.state:
            state = load_json(args.state)
            self.logger.info('State: %s', json.dumps(state))

        try:
            for message in self.source.read(config, catalog, state):
                self.logger.write(message)
        except Exception as e:
            self.logger.error('Encountered an error while reading from source: %s', e)
            raise


class AirbyteDestinationRunner(Runner):

    def __init__(self, logger, destination, stdin=None):
        super().__init__(logger)
        self.destination = destination
        self.stdin = stdin

    def parser(self):
        parser = argparse.ArgumentParser(prog=self.destination.name)
        subparsers = parser.add_subparsers(dest='command', required=True)

        spec_parser = subparsers.add_parser('spec', help='Output the connector specification')
        spec_parser.set_defaults(func=self.spec)

        check_parser = subparsers.add_parser('check', help='Check the connection')
        self.add_config_argument(check_parser)
        check_parser.set_defaults(func=self.check)

        write_parser = subparsers.add_parser('write', help='Write messages read from stdin')
        self.add_config_argument(write_parser)
        write_parser.add_argument('--catalog', required=True, help='Configured catalog file (JSON)')
        write_parser.add_argument('--dry-run', action='store_true', default=False,
            help='Skip writing records to the destination')
        write_parser.set_defaults(func=self.write)

        return parser

    def spec(self, args): # pylint: disable=unused-argument
        self.logger.write(self.destination.spec())

    def check(self, args):
        self.check_with(self.destination, args)

    def write(self, args):
        spec = self.destination.spec()
        try:
            config = self.load_config(args.config, spec)
            catalog = load_json(args.catalog)
        except Exception as e:
            self.logger.error('Encountered an error while loading configuration: %s', e)
            raise
        self.logger.info('Config: %s', json.dumps(redact_config(config, spec)))
        self.logger.info('Catalog: %s', json.dumps(catalog))

        stdin = self.stdin if self.stdin is not None else sys.stdin
        try:
            for message in self.destination.write(config, catalog, stdin, args.dry_run):
                self.logger.write(message)
        except Exception as e:
            self.logger.error('Encountered an error while writing to destination: %s', e,
                exc_info=True)
            raise
