# Standard Library
import abc
import copy
import inspect
import json

# 3rd Party
from singer import metrics

# Local
from connector_cdk.errors import ConfigurationError, StreamNotFoundError
from connector_cdk.protocol import (
    AirbyteCatalogMessage,
    AirbyteConnectionStatus,
    AirbyteConnectionStatusMessage,
    AirbyteMessageType,
    AirbyteRecord,
    AirbyteSpec,
    AirbyteStateMessage,
    SyncMode,
)
from connector_cdk.utils import get_abs_path, load_json, memory_usage


def error_message(error):
    '''
    Extract a user-facing message from whatever a connection check produced. Checks either
    return (False, error) or raise, and the error may be an exception, a mapping with a
    'message' key, or a bare value; all of them must end up with the same text.
    '''
    if isinstance(error, dict) and error.get('message'):
        return str(error['message'])
    message = getattr(error, 'message', None)
    if message:
        return str(message)
    if isinstance(error, BaseException) and error.args and isinstance(error.args[0], dict) \
            and error.args[0].get('message'):
        return str(error.args[0]['message'])
    text = str(error) if error is not None else ''
    if text:
        return text
    return 'Unknown error: {}'.format(json.dumps(error, default=repr))


class AirbyteSource(abc.ABC):

    @property
    def name(self):
        return self.__class__.__name__

    def spec(self):
        '''
        Load resources/spec.json from the package that defines the source.
        '''
        path = get_abs_path('resources/spec.json', inspect.getfile(self.__class__))
        return AirbyteSpec(load_json(path))

    @abc.abstractmethod
    def check(self, config):
        pass

    @abc.abstractmethod
    def discover(self, config):
        pass

    @abc.abstractmethod
    def read(self, config, catalog, state=None):
        pass


class AirbyteSourceBase(AirbyteSource):
    '''
    Source that implements check, discover and read on top of a set of streams. Connectors
    provide check_connection() and streams(); everything about driving the streams, choosing
    full refresh or incremental reads and checkpointing state lives here.
    '''

    def __init__(self, logger):
        self.logger = logger

    @abc.abstractmethod
    def check_connection(self, config):
        '''
        Test the config against the source's system. Returns a (succeeded, error) tuple, where
        error describes what went wrong and is displayed to the user when succeeded is False.
        '''

    @abc.abstractmethod
    def streams(self, config):
        '''
        Build the streams of this source for the given config. Any I/O needed to enumerate
        them (e.g. listing projects) happens here, once per command.
        '''

    def discover(self, config):
        streams = [stream.as_airbyte_stream() for stream in self.streams(config)]
        return AirbyteCatalogMessage(streams)

    def check(self, config):
        try:
            succeeded, error = self.check_connection(config)
            if not succeeded:
                message = error_message(error) if error is not None else 'Connection check failed'
                return AirbyteConnectionStatusMessage(AirbyteConnectionStatus.FAILED, message)
        except Exception as e: # pylint: disable=broad-except
            return AirbyteConnectionStatusMessage(AirbyteConnectionStatus.FAILED, error_message(e))
        return AirbyteConnectionStatusMessage(AirbyteConnectionStatus.SUCCEEDED)

    def read(self, config, catalog, state=None):
        '''
        The state structure is owned by the streams; this only keys it by stream name:
        {
          "commits": {"project1/repo1": {"cutoff": 1700000000000}},
          "pull_requests": {...}
        }
        The caller's state is never modified. Every STATE message carries the complete map,
        since it is persisted as a whole.
        '''
        connector_state = copy.deepcopy(state or {})
        self.logger.info('Syncing %s', self.name)

        # Build the streams once, since the connector may need to make queries to do so
        stream_instances = {}
        for stream in self.streams(config):
            stream_instances[stream.name] = stream

        for configured_stream in catalog['streams']:
            stream_name = configured_stream['stream']['name']
            stream_instance = stream_instances.get(stream_name)
            if not stream_instance:
                raise StreamNotFoundError(stream_name, stream_instances.keys())

            try:
                yield from self._read_stream(stream_instance, configured_stream, connector_state)
            except Exception as e:
                self.logger.error('Encountered an error while reading stream %s: %s',
                    stream_name, e, exc_info=True)
                raise

        self.logger.info('Finished syncing %s', self.name)

    def _read_stream(self, stream_instance, configured_stream, connector_state):
        use_incremental = configured_stream.get('sync_mode') == SyncMode.INCREMENTAL \
            and stream_instance.supports_incremental

        if use_incremental:
            messages = self._read_incremental(stream_instance, configured_stream, connector_state)
        else:
            messages = self._read_full_refresh(stream_instance, configured_stream)

        stream_name = configured_stream['stream']['name']
        self.logger.info('Syncing %s stream in %s mode', stream_name,
            'incremental' if use_incremental else 'full')

        record_counter = 0
        with metrics.record_counter(stream_name) as counter:
            for message in messages:
                if message.type == AirbyteMessageType.RECORD:
                    record_counter += 1
                    counter.increment()
                yield message

        self.logger.info('Finished syncing %s stream. Read %s records', stream_name, record_counter)
        self.logger.debug('Memory usage after %s stream: %s bytes', stream_name, memory_usage())

    def _read_incremental(self, stream_instance, configured_stream, connector_state):
        stream_name = configured_stream['stream']['name']
        cursor_field = configured_stream.get('cursor_field')
        namespace = configured_stream['stream'].get('namespace')

        checkpoint_interval = stream_instance.state_checkpoint_interval
        if checkpoint_interval is not None and (
                isinstance(checkpoint_interval, bool)
                or not isinstance(checkpoint_interval, int)
                or checkpoint_interval < 0):
            raise ConfigurationError(
                'Checkpoint interval {} of {} stream must be a non-negative integer'
                .format(checkpoint_interval, stream_name))

        stream_state = connector_state.get(stream_name) or {}
        self.logger.info('Setting initial state of %s stream to %s', stream_name,
            json.dumps(stream_state, default=str))

        for stream_slice in stream_instance.stream_slices(
                SyncMode.INCREMENTAL, cursor_field, stream_state):
            if stream_slice:
                self.logger.info('Started processing %s stream slice %s', stream_name,
                    json.dumps(stream_slice, default=str))

            record_counter = 0
            for record_data in stream_instance.read_records(
                    SyncMode.INCREMENTAL, cursor_field, stream_slice, stream_state):
                record_counter += 1
                yield AirbyteRecord.make(stream_name, record_data, namespace)
                stream_state = stream_instance.get_updated_state(
                    stream_state, record_data, stream_slice)
                if checkpoint_interval and record_counter % checkpoint_interval == 0:
                    yield self._checkpoint_state(stream_name, stream_state, connector_state)

            # Each slice boundary must be a safe place to resume from
            yield self._checkpoint_state(stream_name, stream_state, connector_state)

            if stream_slice:
                self.logger.info('Finished processing %s stream slice %s. Read %s records',
                    stream_name, json.dumps(stream_slice, default=str), record_counter)

        self.logger.info('Last recorded state of %s stream is %s', stream_name,
            json.dumps(stream_state, default=str))

    def _read_full_refresh(self, stream_instance, configured_stream):
        stream_name = configured_stream['stream']['name']
        cursor_field = configured_stream.get('cursor_field')
        namespace = configured_stream['stream'].get('namespace')

        for stream_slice in stream_instance.stream_slices(SyncMode.FULL_REFRESH, cursor_field):
            if stream_slice:
                self.logger.info('Started processing %s stream slice %s', stream_name,
                    json.dumps(stream_slice, default=str))

            record_counter = 0
            for record_data in stream_instance.read_records(
                    SyncMode.FULL_REFRESH, cursor_field, stream_slice):
                record_counter += 1
                yield AirbyteRecord.make(stream_name, record_data, namespace)

            if stream_slice:
                self.logger.info('Finished processing %s stream slice %s. Read %s records',
                    stream_name, json.dumps(stream_slice, default=str), record_counter)

    def _checkpoint_state(self, stream_name, stream_state, connector_state):
        connector_state[stream_name] = stream_state
        self.logger.debug('Setting state of %s stream to %s', stream_name,
            json.dumps(stream_state, default=str))
        # Snapshot, so messages already handed out don't change as the sync moves on
        return AirbyteStateMessage(copy.deepcopy(connector_state))
