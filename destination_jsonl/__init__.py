# 3rd Party
import singer

# Local
from connector_cdk import AirbyteDestinationRunner, AirbyteLogger
from destination_jsonl.destination import JsonlDestination

logger = AirbyteLogger()


@singer.utils.handle_top_exception(logger)
def main(argv=None):
    logger.capture(__name__)
    destination = JsonlDestination(logger)
    AirbyteDestinationRunner(logger, destination).run(argv)

if __name__ == '__main__':
    main()
