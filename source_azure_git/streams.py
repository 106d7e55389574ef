# Standard Library
import functools

# 3rd Party
import singer

# Local
from connector_cdk import AirbyteStreamBase, IncrementalStreamBase
from connector_cdk.utils import get_abs_path, load_schemas, to_datetime
from source_azure_git.client import API_VERSION, API_VERSION_7_1

DEFAULT_START_DATE = '1970-01-01T00:00:00Z'

KEY_PROPERTIES = {
    'repositories': ['id'],
    'commits': ['id'],
    'pull_requests': ['artifactId'],
    'builds': ['_sdc_id'],
}

@functools.lru_cache(maxsize=None)
def get_schemas():
    return load_schemas(get_abs_path('schemas', __file__))


def split_repository(repo_path):
    reposplit = repo_path.split('/')
    return reposplit[0], reposplit[1]

def transform_repo_to_write(org, repo):
    project_name = repo['project']['name']
    repo_name = repo['name']

    return {
        '_sdc_repository': '{}/{}/{}'.format(org, project_name, repo_name),
        'id': '{}/{}/{}/{}'.format('azure-git', org, project_name, repo_name),
        'source': 'azure-git',
        'org_name': org,
        'repo_name': '{}/{}'.format(project_name, repo_name),
        'is_source_public': repo['project'].get('visibility') == 'public',
        'default_branch': repo['defaultBranch'] if 'defaultBranch' in repo else '',
        'fork_org_name': None,
        'fork_repo_name': None,
        'description': repo['description'] if 'description' in repo else ''
    }


class AzureGitStream(AirbyteStreamBase):

    def __init__(self, logger, client, repositories, config):
        super().__init__(logger)
        self.client = client
        self.repositories = repositories
        self.config = config

    @property
    def primary_key(self):
        return KEY_PROPERTIES[self.name]

    def get_json_schema(self):
        return get_schemas()[self.name]

    def transform(self, record):
        # Conform to the stream schema: unknown fields are dropped, date-times normalized to UTC
        with singer.Transformer() as transformer:
            return transformer.transform(record, self.get_json_schema())

    def stream_slices(self, sync_mode, cursor_field=None, stream_state=None):
        for repository in self.repositories:
            yield {'repository': repository}


class AzureGitIncrementalStream(AzureGitStream, IncrementalStreamBase):

    @property
    def cutoff_lag_days(self):
        return self.config.get('cutoff_lag_days', 0)

    def get_state_key(self, stream_slice=None):
        return stream_slice['repository']

    def start_time(self, stream_state, stream_slice):
        return self.get_cutoff(stream_state, stream_slice,
            default=self.config.get('start_date') or DEFAULT_START_DATE)


class Repositories(AzureGitStream):

    def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        project, repo = split_repository(stream_slice['repository'])
        yield self.transform(
            transform_repo_to_write(self.client.org, self.client.get_repository(project, repo)))


class Commits(AzureGitIncrementalStream):
    '''
    https://docs.microsoft.com/en-us/rest/api/azure/devops/git/commits/get-commits?view=azure-devops-rest-6.0#gitcommitref

    Commits come back newest first, so the cutoff can only be trusted once a repository has
    been read completely.
    '''

    @property
    def cursor_field(self):
        return ['committer', 'date']

    def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        repo_path = stream_slice['repository']
        project, project_repo = split_repository(repo_path)
        since = self.start_time(stream_state, stream_slice)

        for response in self.client.get_all_pages(
            self.client.url(
                '{}/_apis/git/repositories/{}/commits'.format(project, project_repo),
                **{'api-version': API_VERSION, 'searchCriteria.fromDate': singer.utils.strftime(since)}
            ),
            'searchCriteria.$top',
            'searchCriteria.$skip',
            source=self.name
        ):
            for commit in response.json()['value']:
                commit['_sdc_repository'] = '{}/{}/{}'.format(self.client.org, project, project_repo)
                commit['id'] = '{}/{}/{}/{}'.format(self.client.org, project, project_repo,
                    commit['commitId'])
                yield self.transform(commit)


class PullRequests(AzureGitIncrementalStream):
    '''
    https://docs.microsoft.com/en-us/rest/api/azure/devops/git/pull-requests/get-pull-requests?view=azure-devops-rest-6.0

    There is no fromDate parameter, so every pull request is listed and the ones closed before
    the cutoff are skipped. Open pull requests are always emitted.
    '''

    @property
    def cursor_field(self):
        return 'closedDate'

    def get_cursor_value(self, record):
        return to_datetime(record.get('closedDate') or record.get('creationDate'))

    def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        repo_path = stream_slice['repository']
        project, project_repo = split_repository(repo_path)
        since = self.start_time(stream_state, stream_slice)

        for response in self.client.get_all_pages(
            self.client.url(
                '{}/_apis/git/repositories/{}/pullrequests'.format(project, project_repo),
                **{'api-version': API_VERSION, 'searchCriteria.status': 'all'}
            ),
            '$top',
            '$skip',
            True, # No link header to indicate availability of more data
            source=self.name
        ):
            for pr in response.json()['value']:
                if 'closedDate' in pr and to_datetime(pr['closedDate']) < since:
                    continue

                prid = pr['pullRequestId']
                pr['commits'] = []
                for pr_commit_response in self.client.get_all_pages(
                    self.client.url(
                        '{}/_apis/git/repositories/{}/pullrequests/{}/commits'
                            .format(project, project_repo, prid),
                        **{'api-version': API_VERSION}
                    ),
                    '$top',
                    'continuationToken',
                    source=self.name
                ):
                    pr['commits'].extend(pr_commit_response.json()['value'])

                pr['_sdc_repository'] = '{}/{}/{}'.format(self.client.org, project, project_repo)

                # pullRequestId is only unique within a repository. The unique artifactId isn't
                # included when listing, so build it the way Azure does, %2f separators included.
                pr['artifactId'] = 'vstfs:///Git/PullRequestId/{}%2f{}%2f{}' \
                    .format(pr['repository']['project']['id'], pr['repository']['id'], prid)
                yield self.transform(pr)


class Builds(AzureGitIncrementalStream):
    '''
    https://learn.microsoft.com/en-us/rest/api/azure/devops/build/builds/list?view=azure-devops-rest-7.1
    '''

    @property
    def cursor_field(self):
        return 'finishTime'

    def read_records(self, sync_mode, cursor_field=None, stream_slice=None, stream_state=None):
        repo_path = stream_slice['repository']
        project, repo_name = split_repository(repo_path)
        since = self.start_time(stream_state, stream_slice)

        repo_id = self.client.get_repository(project, repo_name)['id']
        sdc_repository = '{}/{}/{}'.format(self.client.org, project, repo_name)

        for response in self.client.get_all_pages(
            self.client.url(
                '{}/_apis/build/builds'.format(project),
                **{
                    'queryOrder': 'finishTimeDescending',
                    'repositoryId': repo_id,
                    'repositoryType': 'TfsGit',
                    'api-version': API_VERSION_7_1,
                }
            ),
            '$top',
            'continuationToken',
            source=self.name
        ):
            builds = response.json()['value']
            builds_to_write = [
                build for build in builds
                if 'finishTime' not in build or to_datetime(build['finishTime']) > since
            ]
            for build in builds_to_write:
                yield self.transform({
                    **build,
                    '_sdc_repository': sdc_repository,
                    '_sdc_id': '{}/build/{}'.format(sdc_repository, build['id'])
                })

            # The API is ordered, as soon as a build finished before the cutoff there's no more
            if len(builds_to_write) < len(builds):
                break
