# Standard Library
import abc
import inspect

# Local
from connector_cdk.protocol import AirbyteSpec, parse_airbyte_message
from connector_cdk.utils import get_abs_path, load_json


class AirbyteDestination(abc.ABC):

    def __init__(self, logger):
        self.logger = logger

    @property
    def name(self):
        return self.__class__.__name__

    def spec(self):
        path = get_abs_path('resources/spec.json', inspect.getfile(self.__class__))
        return AirbyteSpec(load_json(path))

    @abc.abstractmethod
    def check(self, config):
        pass

    @abc.abstractmethod
    def write(self, config, catalog, input_lines, dry_run=False):
        '''
        Consume the messages of a source, one JSON document per line in input_lines, and yield
        the protocol messages to report back, typically each STATE message once every record
        before it has been durably written.
        '''

    def read_messages(self, input_lines):
        for line in input_lines:
            line = line.strip()
            if not line:
                continue
            yield parse_airbyte_message(line)
