class ConnectorException(Exception):
    pass

class ConfigurationError(ConnectorException):
    pass

class StreamNotFoundError(ConfigurationError):
    def __init__(self, stream_name, available_streams):
        self.stream_name = stream_name
        self.available_streams = list(available_streams)
        super().__init__(
            'The requested stream {} was not found in the source. Available streams: {}'
            .format(stream_name, ', '.join(self.available_streams)))

class ProtocolError(ConnectorException):
    pass
