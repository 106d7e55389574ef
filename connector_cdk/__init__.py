from connector_cdk.destination import AirbyteDestination
from connector_cdk.errors import (
    ConfigurationError,
    ConnectorException,
    ProtocolError,
    StreamNotFoundError,
)
from connector_cdk.logger import AirbyteLogger, AirbyteLogHandler
from connector_cdk.protocol import (
    AirbyteCatalogMessage,
    AirbyteConnectionStatus,
    AirbyteConnectionStatusMessage,
    AirbyteLog,
    AirbyteLogLevel,
    AirbyteMessage,
    AirbyteMessageType,
    AirbyteRecord,
    AirbyteSpec,
    AirbyteStateMessage,
    DestinationSyncMode,
    SyncMode,
    parse_airbyte_message,
)
from connector_cdk.runner import AirbyteDestinationRunner, AirbyteSourceRunner
from connector_cdk.source import AirbyteSource, AirbyteSourceBase
from connector_cdk.streams import (
    AirbyteStreamBase,
    IncrementalStreamBase,
    calculate_updated_stream_state,
)

__all__ = [
    'AirbyteCatalogMessage',
    'AirbyteConnectionStatus',
    'AirbyteConnectionStatusMessage',
    'AirbyteDestination',
    'AirbyteDestinationRunner',
    'AirbyteLog',
    'AirbyteLogHandler',
    'AirbyteLogLevel',
    'AirbyteLogger',
    'AirbyteMessage',
    'AirbyteMessageType',
    'AirbyteRecord',
    'AirbyteSource',
    'AirbyteSourceBase',
    'AirbyteSourceRunner',
    'AirbyteSpec',
    'AirbyteStateMessage',
    'AirbyteStreamBase',
    'ConfigurationError',
    'ConnectorException',
    'DestinationSyncMode',
    'IncrementalStreamBase',
    'ProtocolError',
    'StreamNotFoundError',
    'SyncMode',
    'calculate_updated_stream_state',
    'parse_airbyte_message',
]
