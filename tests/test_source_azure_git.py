import urllib.parse

import pytest
import requests

from connector_cdk import AirbyteMessageType, SyncMode
from connector_cdk.utils import to_millis
from conftest import configured_catalog
from source_azure_git.client import AzureGitClient, BadRequestException, NotFoundException
from source_azure_git.source import AzureGitSource, expand_repositories
from source_azure_git.streams import Builds, Commits, PullRequests, Repositories

CONFIG = {
    'org': 'acme',
    'user_name': 'jdoe',
    'access_token': 'secret',
    'repositories': ['proj/repo'],
    'cutoff_lag_days': 0,
    'page_size': 100,
}

REPOSITORY = {
    'id': 'repo-id',
    'name': 'repo',
    'defaultBranch': 'refs/heads/main',
    'project': {'id': 'proj-id', 'name': 'proj', 'visibility': 'private'},
}


class FakeResponse(object):

    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.headers = headers or {}

    def json(self):
        return self.body


class FakeSession(object):
    '''
    Serves canned responses by URL path and remembers every URL it was asked for.
    '''

    def __init__(self, routes):
        self.routes = routes
        self.auth = None
        self.urls = []

    def request(self, method, url):
        self.urls.append(url)
        path = urllib.parse.urlparse(url).path
        if path not in self.routes:
            return FakeResponse(404)
        route = self.routes[path]
        return route(url) if callable(route) else route

    def params(self, path_suffix):
        return [
            urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
            for url in self.urls if urllib.parse.urlparse(url).path.endswith(path_suffix)
        ]


def sequence(*responses):
    responses = iter(responses)
    def route(url): # pylint: disable=unused-argument
        response = next(responses)
        if isinstance(response, Exception):
            raise response
        return response
    return route

def client_config(**overrides):
    return dict(CONFIG, **overrides)

def make_client(routes, **config):
    session = FakeSession(routes)
    return AzureGitClient(client_config(**config), session=session), session


def test_client_uses_basic_auth_and_org_url():
    client, session = make_client({})

    assert session.auth == ('jdoe', 'secret')
    assert client.url('proj/_apis/git/repositories', **{'api-version': '6.0', '$top': 1}) == \
        'https://dev.azure.com/acme/proj/_apis/git/repositories?api-version=6.0&$top=1'

def test_client_raises_mapped_errors():
    client, _ = make_client({})

    with pytest.raises(NotFoundException) as excinfo:
        client.get(client.url('proj/_apis/git/repositories/missing'))
    assert 'HTTP-error-code: 404' in str(excinfo.value)

def test_client_follows_continuation_tokens():
    pages = iter([
        FakeResponse(body={'value': [1]}, headers={'x-ms-continuationtoken': 'next'}),
        FakeResponse(body={'value': [2]}),
    ])
    client, session = make_client({'/acme/proj/_apis/items': lambda url: next(pages)})

    responses = list(client.get_all_pages(client.url('proj/_apis/items'), '$top',
        'continuationToken'))

    assert [r.json()['value'] for r in responses] == [[1], [2]]
    assert 'continuationToken' not in session.params('/items')[0]
    assert session.params('/items')[1]['continuationToken'] == ['next']


@pytest.fixture
def sleeps(monkeypatch):
    waits = []
    monkeypatch.setattr('time.sleep', waits.append)
    return waits

@pytest.mark.parametrize('first', [
    FakeResponse(429, headers={'Retry-After': '0'}),
    FakeResponse(503),
    requests.exceptions.ConnectionError('connection reset'),
])
def test_client_retries_transient_failures(sleeps, first):
    client, session = make_client({
        '/acme/proj/_apis/items': sequence(first, FakeResponse(body={'value': [1]})),
    })

    response = client.get(client.url('proj/_apis/items'), source='items')

    assert response.json() == {'value': [1]}
    assert len(session.urls) == 2
    assert len(sleeps) == 1

def test_client_does_not_retry_client_errors(sleeps):
    client, session = make_client({
        '/acme/proj/_apis/items': sequence(FakeResponse(400), FakeResponse(body={})),
    })

    with pytest.raises(BadRequestException) as excinfo:
        client.get(client.url('proj/_apis/items'))

    assert 'HTTP-error-code: 400' in str(excinfo.value)
    assert len(session.urls) == 1
    assert sleeps == []

@pytest.mark.parametrize('link', ['<https://dev.azure.com/next>; rel="next"', ''])
def test_client_follows_link_headers(link):
    client, session = make_client({
        '/acme/proj/_apis/items': sequence(
            FakeResponse(body={'value': [1]}, headers={'link': link}),
            FakeResponse(body={'value': [2]}),
        ),
    })

    responses = list(client.get_all_pages(client.url('proj/_apis/items'), '$top', '$skip'))

    assert [r.json()['value'] for r in responses] == [[1], [2]]
    assert [p['$skip'] for p in session.params('/items')] == [['0'], ['100']]
    assert session.params('/items')[0]['$top'] == ['100']

def test_client_stops_at_short_page_without_stop_indicator():
    client, session = make_client({
        '/acme/_apis/projects': sequence(
            FakeResponse(body={'count': 2, 'value': [{'name': 'a'}, {'name': 'b'}]}),
            FakeResponse(body={'count': 1, 'value': [{'name': 'c'}]}),
        ),
    }, page_size=2)

    projects = list(client.list_projects())

    assert [p['name'] for p in projects] == ['a', 'b', 'c']
    assert [p['$skip'] for p in session.params('/projects')] == [['0'], ['2']]

def test_check_succeeds(logger):
    session = FakeSession({
        '/acme/proj/_apis/git/repositories/repo/commits': FakeResponse(body={'value': []}),
    })

    status = AzureGitSource(logger, session=session).check(CONFIG)

    assert status.to_dict()['connectionStatus'] == {'status': 'SUCCEEDED'}

def test_check_reports_missing_repository(logger):
    status = AzureGitSource(logger, session=FakeSession({})).check(CONFIG)

    connection_status = status.to_dict()['connectionStatus']
    assert connection_status['status'] == 'FAILED'
    assert connection_status['message'] == (
        "HTTP-error-code: 404, Error: Please check the repository 'repo' exists in project "
        "'proj' for org 'acme', and that user 'jdoe' has permission to access it.")

def test_check_reports_bad_credentials(logger):
    session = FakeSession({
        '/acme/proj/_apis/git/repositories/repo/commits': FakeResponse(401),
    })

    status = AzureGitSource(logger, session=session).check(CONFIG)

    connection_status = status.to_dict()['connectionStatus']
    assert connection_status['status'] == 'FAILED'
    assert 'Invalid authorization credentials' in connection_status['message']


def test_expand_repositories():
    client, _ = make_client({
        '/acme/_apis/projects': FakeResponse(body={
            'count': 2, 'value': [{'name': 'alpha'}, {'name': 'beta'}]}),
        '/acme/alpha/_apis/git/repositories': FakeResponse(body={
            'value': [{'name': 'web'}, {'name': 'old', 'isDisabled': True}]}),
        '/acme/beta/_apis/git/repositories': FakeResponse(body={'value': [{'name': 'api'}]}),
    })

    repositories = expand_repositories(client, ['*/*', 'alpha/web', 'gamma/tools'])

    assert repositories == ['alpha/web', 'beta/api', 'gamma/tools']

def test_discover_lists_every_stream(logger):
    catalog = AzureGitSource(logger, session=FakeSession({})).discover(CONFIG)

    streams = {s['name']: s for s in catalog.catalog['streams']}
    assert list(streams) == ['repositories', 'commits', 'pull_requests', 'builds']
    assert streams['repositories']['supported_sync_modes'] == ['full_refresh']
    assert streams['commits']['default_cursor_field'] == ['committer', 'date']
    assert streams['pull_requests']['source_defined_primary_key'] == [['artifactId']]
    assert 'properties' in streams['builds']['json_schema']


def test_repositories_stream(logger):
    client, _ = make_client({
        '/acme/proj/_apis/git/repositories/repo': FakeResponse(body=REPOSITORY),
    })
    stream = Repositories(logger, client, ['proj/repo'], CONFIG)

    records = list(stream.read_records(SyncMode.FULL_REFRESH, stream_slice={'repository': 'proj/repo'}))

    assert records == [{
        '_sdc_repository': 'acme/proj/repo',
        'id': 'azure-git/acme/proj/repo',
        'source': 'azure-git',
        'org_name': 'acme',
        'repo_name': 'proj/repo',
        'is_source_public': False,
        'default_branch': 'refs/heads/main',
        'fork_org_name': None,
        'fork_repo_name': None,
        'description': '',
    }]

def test_commits_start_from_saved_cutoff(logger):
    client, session = make_client({
        '/acme/proj/_apis/git/repositories/repo/commits': FakeResponse(body={'value': [
            {'commitId': 'abc', 'committer': {'date': '2024-02-03T00:00:00Z'}},
        ]}),
    })
    stream = Commits(logger, client, ['proj/repo'], CONFIG)
    state = {'proj/repo': {'cutoff': to_millis('2024-02-01T00:00:00Z')}}

    records = list(stream.read_records(SyncMode.INCREMENTAL, stream_slice={'repository': 'proj/repo'},
        stream_state=state))

    assert [r['id'] for r in records] == ['acme/proj/repo/abc']
    assert records[0]['_sdc_repository'] == 'acme/proj/repo'
    params = session.params('/commits')[0]
    assert params['searchCriteria.fromDate'] == ['2024-02-01T00:00:00.000000Z']
    assert params['searchCriteria.$top'] == ['100']
    assert params['searchCriteria.$skip'] == ['0']

def test_records_conform_to_stream_schema(logger):
    client, _ = make_client({
        '/acme/proj/_apis/git/repositories/repo/commits': FakeResponse(body={'value': [{
            'commitId': 'abc',
            'committer': {'name': 'Jane', 'date': '2024-02-03T01:00:00+01:00'},
            '_links': {'self': {'href': 'https://dev.azure.com'}},
        }]}),
    })
    stream = Commits(logger, client, ['proj/repo'], CONFIG)

    records = list(stream.read_records(SyncMode.INCREMENTAL, stream_slice={'repository': 'proj/repo'},
        stream_state={}))

    assert records == [{
        '_sdc_repository': 'acme/proj/repo',
        'id': 'acme/proj/repo/abc',
        'commitId': 'abc',
        'committer': {'name': 'Jane', 'date': '2024-02-03T00:00:00.000000Z'},
    }]

def test_commits_start_from_start_date(logger):
    client, session = make_client({
        '/acme/proj/_apis/git/repositories/repo/commits': FakeResponse(body={'value': []}),
    })
    stream = Commits(logger, client, ['proj/repo'], client_config(start_date='2023-06-01T00:00:00Z'))

    list(stream.read_records(SyncMode.INCREMENTAL, stream_slice={'repository': 'proj/repo'},
        stream_state={}))

    assert session.params('/commits')[0]['searchCriteria.fromDate'] == \
        ['2023-06-01T00:00:00.000000Z']

def test_pull_requests_skip_ones_closed_before_cutoff(logger):
    def pull_request(prid, **dates):
        return dict({
            'pullRequestId': prid,
            'creationDate': '2024-01-01T00:00:00Z',
            'repository': {'id': 'repo-id', 'project': {'id': 'proj-id'}},
        }, **dates)

    client, session = make_client({
        '/acme/proj/_apis/git/repositories/repo/pullrequests': FakeResponse(body={
            'count': 3,
            'value': [
                pull_request(1, closedDate='2024-01-15T00:00:00Z'),
                pull_request(2, closedDate='2024-03-01T00:00:00Z'),
                pull_request(3),
            ],
        }),
        '/acme/proj/_apis/git/repositories/repo/pullrequests/2/commits': FakeResponse(body={
            'value': [{'commitId': 'c2'}]}),
        '/acme/proj/_apis/git/repositories/repo/pullrequests/3/commits': FakeResponse(body={
            'value': []}),
    })
    stream = PullRequests(logger, client, ['proj/repo'], CONFIG)
    state = {'proj/repo': {'cutoff': to_millis('2024-02-01T00:00:00Z')}}

    records = list(stream.read_records(SyncMode.INCREMENTAL, stream_slice={'repository': 'proj/repo'},
        stream_state=state))

    assert [r['pullRequestId'] for r in records] == [2, 3]
    assert records[0]['commits'] == [{'commitId': 'c2'}]
    assert records[0]['artifactId'] == 'vstfs:///Git/PullRequestId/proj-id%2frepo-id%2f2'
    assert not any('/pullrequests/1/' in url for url in session.urls)

def test_pull_request_cursor_falls_back_to_creation_date(logger):
    client, _ = make_client({})
    stream = PullRequests(logger, client, ['proj/repo'], CONFIG)

    state = stream.get_updated_state({}, {'creationDate': '2024-04-01T00:00:00Z'},
        {'repository': 'proj/repo'})

    assert state == {'proj/repo': {'cutoff': to_millis('2024-04-01T00:00:00Z')}}

def test_builds_stop_at_first_build_before_cutoff(logger):
    client, session = make_client({
        '/acme/proj/_apis/git/repositories/repo': FakeResponse(body=REPOSITORY),
        '/acme/proj/_apis/build/builds': FakeResponse(
            body={'value': [
                {'id': 10},
                {'id': 9, 'finishTime': '2024-03-01T00:00:00Z'},
                {'id': 8, 'finishTime': '2024-01-01T00:00:00Z'},
            ]},
            headers={'x-ms-continuationtoken': 'more'},
        ),
    })
    stream = Builds(logger, client, ['proj/repo'], CONFIG)
    state = {'proj/repo': {'cutoff': to_millis('2024-02-01T00:00:00Z')}}

    records = list(stream.read_records(SyncMode.INCREMENTAL, stream_slice={'repository': 'proj/repo'},
        stream_state=state))

    assert [r['_sdc_id'] for r in records] == ['acme/proj/repo/build/10', 'acme/proj/repo/build/9']
    builds_params = session.params('/build/builds')
    assert len(builds_params) == 1
    assert builds_params[0]['repositoryId'] == ['repo-id']
    assert builds_params[0]['queryOrder'] == ['finishTimeDescending']


def test_incremental_read_checkpoints_each_repository(logger):
    def commits(*dates):
        return FakeResponse(body={'value': [
            {'commitId': str(i), 'committer': {'date': date}} for i, date in enumerate(dates)
        ]})

    session = FakeSession({
        '/acme/proj/_apis/git/repositories/web/commits':
            commits('2024-03-02T00:00:00Z', '2024-03-01T00:00:00Z'),
        '/acme/proj/_apis/git/repositories/api/commits': commits('2024-02-01T00:00:00Z'),
    })
    config = client_config(repositories=['proj/web', 'proj/api'])
    source = AzureGitSource(logger, session=session)

    messages = list(source.read(config, configured_catalog('commits'),
        {'commits': {'proj/web': {'cutoff': to_millis('2024-01-01T00:00:00Z')}}}))

    assert [m.type for m in messages] == [
        AirbyteMessageType.RECORD, AirbyteMessageType.RECORD, AirbyteMessageType.STATE,
        AirbyteMessageType.RECORD, AirbyteMessageType.STATE,
    ]
    assert messages[-1].data == {'commits': {
        'proj/web': {'cutoff': to_millis('2024-03-02T00:00:00Z')},
        'proj/api': {'cutoff': to_millis('2024-02-01T00:00:00Z')},
    }}
    assert messages[0].record['stream'] == 'commits'
