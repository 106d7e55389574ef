# Standard Library
import collections
import json
import os
import tempfile

# Local
from connector_cdk import (
    AirbyteConnectionStatus,
    AirbyteConnectionStatusMessage,
    AirbyteDestination,
    AirbyteMessageType,
    DestinationSyncMode,
)


class JsonlDestination(AirbyteDestination):
    '''
    Appends the data of every record to <destination_path>/<stream>.jsonl. State messages are
    echoed back only after the files have been flushed, so a state reported to the platform
    never gets ahead of the records on disk.
    '''

    def check(self, config):
        path = config['destination_path']
        try:
            os.makedirs(path, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=path):
                pass
        except OSError as e:
            return AirbyteConnectionStatusMessage(AirbyteConnectionStatus.FAILED,
                'Unable to write to {}: {}'.format(path, e))
        return AirbyteConnectionStatusMessage(AirbyteConnectionStatus.SUCCEEDED)

    def stream_path(self, config, stream):
        return os.path.join(config['destination_path'], '{}.jsonl'.format(stream))

    def write(self, config, catalog, input_lines, dry_run=False):
        configured_streams = {s['stream']['name']: s for s in catalog['streams']}
        files = {}
        written = collections.Counter()
        skipped = collections.Counter()

        if not dry_run:
            os.makedirs(config['destination_path'], exist_ok=True)
            for name, configured_stream in configured_streams.items():
                mode = 'a'
                if configured_stream.get('destination_sync_mode') == DestinationSyncMode.OVERWRITE:
                    mode = 'w'
                files[name] = open(self.stream_path(config, name), mode)

        try:
            for message in self.read_messages(input_lines):
                if message.type == AirbyteMessageType.RECORD:
                    record = message.unpack_raw()
                    if record.stream not in configured_streams:
                        if not skipped[record.stream]:
                            self.logger.warning('Skipping records of %s stream, which is not in '
                                'the configured catalog', record.stream)
                        skipped[record.stream] += 1
                        continue
                    if not dry_run:
                        files[record.stream].write(json.dumps(record.data) + '\n')
                    written[record.stream] += 1
                elif message.type == AirbyteMessageType.STATE:
                    for file in files.values():
                        file.flush()
                    yield message
                elif message.type == AirbyteMessageType.LOG:
                    self.logger.debug('Source log: %s', message.message)
        finally:
            for file in files.values():
                file.close()

        for stream, count in sorted(written.items()):
            self.logger.info('%s %s records to %s stream', 'Would write' if dry_run else 'Wrote',
                count, stream)
        for stream, count in sorted(skipped.items()):
            self.logger.info('Skipped %s records of %s stream', count, stream)
