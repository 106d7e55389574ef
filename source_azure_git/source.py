# Local
from connector_cdk import AirbyteSourceBase
from source_azure_git.client import API_VERSION, AzureGitClient, NotFoundException
from source_azure_git.streams import Builds, Commits, PullRequests, Repositories, split_repository


def expand_repositories(client, patterns):
    '''
    Turn the configured project/repo entries into concrete repositories, listing projects or
    repositories from the API for '*' wildcards. Order is kept and duplicates dropped.
    '''
    repositories = []
    for pattern in patterns:
        project, repo = split_repository(pattern)
        if project == '*':
            projects = [p['name'] for p in client.list_projects()]
        else:
            projects = [project]

        for project_name in projects:
            if repo == '*':
                names = [r['name'] for r in client.list_repositories(project_name)]
            else:
                names = [repo]
            for name in names:
                repo_path = '{}/{}'.format(project_name, name)
                if repo_path not in repositories:
                    repositories.append(repo_path)
    return repositories


class AzureGitSource(AirbyteSourceBase):

    def __init__(self, logger, session=None):
        super().__init__(logger)
        self.session = session

    def client(self, config):
        return AzureGitClient(config, session=self.session)

    def check_connection(self, config):
        client = self.client(config)
        for pattern in config['repositories']:
            project, project_repo = split_repository(pattern)
            if project == '*':
                # Listing projects is enough to prove the token works for the organization
                next(client.list_projects(), None)
                continue
            if project_repo == '*':
                client.list_repositories(project)
                continue

            self.logger.info('Verifying access of repository: %s', pattern)
            url_for_repo = client.url(
                '{}/_apis/git/repositories/{}/commits'.format(project, project_repo),
                **{'searchCriteria.$top': 1, 'api-version': API_VERSION}
            )
            try:
                client.get(url_for_repo)
            except NotFoundException:
                message = "HTTP-error-code: 404, Error: Please check the repository '{}' exists in " \
                    "project '{}' for org '{}', and that user '{}' has permission to access it." \
                    .format(project_repo, project, config['org'], config['user_name'])
                return False, NotFoundException(message)
        return True, None

    def streams(self, config):
        client = self.client(config)
        repositories = expand_repositories(client, config['repositories'])
        self.logger.info('Resolved %s repositories', len(repositories))
        return [
            Repositories(self.logger, client, repositories, config),
            Commits(self.logger, client, repositories, config),
            PullRequests(self.logger, client, repositories, config),
            Builds(self.logger, client, repositories, config),
        ]
