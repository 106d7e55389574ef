import pytest

from connector_cdk import (
    AirbyteLogger,
    AirbyteMessageType,
    AirbyteSourceBase,
    AirbyteStreamBase,
    SyncMode,
)


class CollectingLogger(AirbyteLogger):

    def __init__(self, level='DEBUG'):
        super().__init__(level=level)
        self.messages = []

    def write(self, message):
        self.messages.append(message)

    @property
    def logs(self):
        return [(m.level, m.message) for m in self.messages if m.type == AirbyteMessageType.LOG]

    def log_messages(self, level=None):
        return [message for lvl, message in self.logs if level is None or lvl == level]


class ListStream(AirbyteStreamBase):
    '''
    In-memory stream: records_by_slice maps each slice to the records it yields. Keeps track of
    every call so tests can check what the source passed in.
    '''

    def __init__(self, logger, name='tasks', slices=None, records_by_slice=None,
                 incremental=True, checkpoint_interval=None, fail_on_slice=None):
        super().__init__(logger)
        self._name = name
        self._slices = slices if slices is not None else [None]
        self._records_by_slice = records_by_slice or {}
        self._incremental = incremental
        self._checkpoint_interval = checkpoint_interval
        self._fail_on_slice = fail_on_slice
        self.slice_calls = []
        self.read_calls = []

    @property
    def name(self):
        return self._name

    @property
    def primary_key(self):
        return 'id'

    @property
    def cursor_field(self):
        return 'updated' if self._incremental else []

    @property
    def state_checkpoint_interval(self):
        return self._checkpoint_interval

    def get_json_schema(self):
        return {'type': 'object', 'properties': {'id': {'type': 'integer'}}}

    def stream_slices(self, sync_mode, cursor_field=None, stream_state=None):
        self.slice_calls.append((sync_mode, cursor_field, stream_state))
        for stream_slice in self._slices:
            yield stream_slice

    def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        self.read_calls.append((sync_mode, cursor_field, stream_slice, stream_state))
        if self._fail_on_slice is not None and stream_slice == self._fail_on_slice:
            raise RuntimeError('Failed to read records of slice {}'.format(stream_slice))
        for record in self._records_by_slice.get(stream_slice, []):
            yield record

    def get_updated_state(self, current_stream_state, latest_record, stream_slice=None):
        cursor = max((current_stream_state or {}).get('cursor', 0), latest_record['updated'])
        return {'cursor': cursor}


class ListSource(AirbyteSourceBase):

    def __init__(self, logger, streams, check_result=(True, None)):
        super().__init__(logger)
        self._streams = streams
        self._check_result = check_result

    def check_connection(self, config):
        if isinstance(self._check_result, BaseException):
            raise self._check_result
        return self._check_result

    def streams(self, config):
        return self._streams


def configured_catalog(*names, sync_mode=SyncMode.INCREMENTAL):
    return {
        'streams': [
            {'stream': {'name': name, 'json_schema': {}}, 'sync_mode': sync_mode}
            for name in names
        ]
    }


def records(*cursors):
    return [{'id': i, 'updated': cursor} for i, cursor in enumerate(cursors)]


@pytest.fixture
def logger():
    return CollectingLogger()
