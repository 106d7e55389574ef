# 3rd Party
import singer

# Local
from connector_cdk import AirbyteLogger, AirbyteSourceRunner
from source_azure_git.source import AzureGitSource

logger = AirbyteLogger()


@singer.utils.handle_top_exception(logger)
def main(argv=None):
    logger.capture(__name__)
    source = AzureGitSource(logger)
    AirbyteSourceRunner(logger, source).run(argv)

if __name__ == '__main__':
    main()
