# Standard Library
import json

# 3rd Party
import singer

# Local
from connector_cdk.errors import ProtocolError
from connector_cdk.utils import to_datetime


class AirbyteMessageType(object):
    CATALOG = 'CATALOG'
    CONNECTION_STATUS = 'CONNECTION_STATUS'
    LOG = 'LOG'
    RECORD = 'RECORD'
    SPEC = 'SPEC'
    STATE = 'STATE'

    ALL = (CATALOG, CONNECTION_STATUS, LOG, RECORD, SPEC, STATE)

class AirbyteConnectionStatus(object):
    SUCCEEDED = 'SUCCEEDED'
    FAILED = 'FAILED'

class AirbyteLogLevel(object):
    FATAL = 'FATAL'
    ERROR = 'ERROR'
    WARN = 'WARN'
    INFO = 'INFO'
    DEBUG = 'DEBUG'
    TRACE = 'TRACE'

LOG_LEVEL_ORDER = {
    AirbyteLogLevel.FATAL: 60,
    AirbyteLogLevel.ERROR: 50,
    AirbyteLogLevel.WARN: 40,
    AirbyteLogLevel.INFO: 30,
    AirbyteLogLevel.DEBUG: 20,
    AirbyteLogLevel.TRACE: 10,
}

def log_level_order(level):
    return LOG_LEVEL_ORDER[level]

class SyncMode(object):
    FULL_REFRESH = 'full_refresh'
    INCREMENTAL = 'incremental'

class DestinationSyncMode(object):
    APPEND = 'append'
    OVERWRITE = 'overwrite'
    APPEND_DEDUP = 'append_dedup'

RAW_STREAM_PREFIX = '_airbyte_raw_'
RAW_AB_ID = '_airbyte_ab_id'
RAW_EMITTED_AT = '_airbyte_emitted_at'
RAW_DATA = '_airbyte_data'


def now_millis():
    return int(singer.utils.now().timestamp() * 1000)


class AirbyteMessage(object):
    type = None

    def to_dict(self):
        raise NotImplementedError

    def to_json(self):
        return json.dumps(self.to_dict(), default=str)

    def __eq__(self, other):
        return isinstance(other, AirbyteMessage) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self.to_json())


class AirbyteRecord(AirbyteMessage):
    type = AirbyteMessageType.RECORD

    def __init__(self, stream, data, namespace=None, emitted_at=None):
        self.stream = stream
        self.data = data
        self.namespace = namespace
        self.emitted_at = emitted_at if emitted_at is not None else now_millis()

    @classmethod
    def make(cls, stream, data, namespace=None):
        return cls(stream, data, namespace=namespace)

    @property
    def record(self):
        record = {'stream': self.stream, 'emitted_at': self.emitted_at, 'data': self.data}
        if self.namespace is not None:
            record['namespace'] = self.namespace
        return record

    def to_dict(self):
        return {'type': self.type, 'record': self.record}

    def is_raw(self):
        return bool(self.stream) and self.stream.startswith(RAW_STREAM_PREFIX)

    def unpack_raw(self):
        '''
        Records produced by Airbyte's raw tables wrap the real payload as a JSON string in
        '_airbyte_data', with the extraction time alongside it. Unwrap them back into a plain
        record for the stream without the raw prefix.
        '''
        if not self.is_raw():
            return self

        emitted_at = self.data.get(RAW_EMITTED_AT)
        if isinstance(emitted_at, str):
            emitted_at = int(to_datetime(emitted_at).timestamp() * 1000)

        data = self.data.get(RAW_DATA)
        if isinstance(data, str):
            data = json.loads(data)

        return AirbyteRecord(
            self.stream[len(RAW_STREAM_PREFIX):],
            data,
            namespace=self.namespace,
            emitted_at=emitted_at,
        )


class AirbyteStateMessage(AirbyteMessage):
    type = AirbyteMessageType.STATE

    def __init__(self, data):
        self.data = data

    @property
    def state(self):
        return {'data': self.data}

    def to_dict(self):
        return {'type': self.type, 'state': self.state}


class AirbyteCatalogMessage(AirbyteMessage):
    type = AirbyteMessageType.CATALOG

    def __init__(self, streams):
        self.streams = streams

    @property
    def catalog(self):
        return {'streams': self.streams}

    def to_dict(self):
        return {'type': self.type, 'catalog': self.catalog}


class AirbyteConnectionStatusMessage(AirbyteMessage):
    type = AirbyteMessageType.CONNECTION_STATUS

    def __init__(self, status, message=None):
        self.status = status
        self.message = message

    @property
    def connection_status(self):
        status = {'status': self.status}
        if self.message is not None:
            status['message'] = self.message
        return status

    def to_dict(self):
        return {'type': self.type, 'connectionStatus': self.connection_status}


class AirbyteLog(AirbyteMessage):
    type = AirbyteMessageType.LOG

    def __init__(self, level, message, stack_trace=None):
        self.level = level
        self.message = message
        self.stack_trace = stack_trace

    @classmethod
    def make(cls, level, message, stack_trace=None):
        return cls(level, message, stack_trace=stack_trace)

    @property
    def log(self):
        log = {'level': self.level, 'message': self.message}
        if self.stack_trace:
            log['stack_trace'] = self.stack_trace
        return log

    def to_dict(self):
        return {'type': self.type, 'log': self.log}


class AirbyteSpec(AirbyteMessage):
    type = AirbyteMessageType.SPEC

    def __init__(self, spec):
        self.spec = spec

    @property
    def connection_specification(self):
        return self.spec.get('connectionSpecification', {})

    def to_dict(self):
        return {'type': self.type, 'spec': self.spec}


def _from_dict(msg):
    msg_type = msg['type']
    if msg_type == AirbyteMessageType.RECORD:
        record = msg['record']
        return AirbyteRecord(record['stream'], record.get('data', {}),
            namespace=record.get('namespace'), emitted_at=record.get('emitted_at'))
    if msg_type == AirbyteMessageType.STATE:
        return AirbyteStateMessage(msg['state'].get('data', {}))
    if msg_type == AirbyteMessageType.CATALOG:
        return AirbyteCatalogMessage(msg['catalog'].get('streams', []))
    if msg_type == AirbyteMessageType.CONNECTION_STATUS:
        status = msg['connectionStatus']
        return AirbyteConnectionStatusMessage(status['status'], status.get('message'))
    if msg_type == AirbyteMessageType.LOG:
        log = msg['log']
        return AirbyteLog(log['level'], log['message'], log.get('stack_trace'))
    return AirbyteSpec(msg['spec'])

def parse_airbyte_message(line):
    try:
        msg = json.loads(line)
    except ValueError as e:
        raise ProtocolError('Invalid Airbyte message: {} ({})'.format(line, e)) from None

    if not isinstance(msg, dict) or not msg.get('type'):
        raise ProtocolError('Invalid Airbyte message: {} (message type is not set)'.format(line))
    if msg['type'] not in AirbyteMessageType.ALL:
        raise ProtocolError('Invalid Airbyte message: {} (unsupported message type {})'
            .format(line, msg['type']))

    try:
        return _from_dict(msg)
    except (KeyError, TypeError, AttributeError) as e:
        raise ProtocolError('Invalid Airbyte message: {} (missing {})'.format(line, e)) from None
