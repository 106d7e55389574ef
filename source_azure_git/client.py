# Standard Library
import logging
import urllib.parse
from contextlib import suppress

# 3rd Party
import backoff
import requests
from singer import metrics

logger = logging.getLogger(__name__)

API_VERSION = "6.0"
API_VERSION_7_1 = "7.1"
DEFAULT_PAGE_SIZE = 100

class AzureException(Exception):
    pass

class BadCredentialsException(AzureException):
    pass

class AuthException(AzureException):
    pass

class NotFoundException(AzureException):
    pass

class BadRequestException(AzureException):
    pass

class InternalServerError(AzureException):
    pass

class UnprocessableError(AzureException):
    pass

class NotModifiedError(AzureException):
    pass

class MovedPermanentlyError(AzureException):
    pass

class ConflictError(AzureException):
    pass

class RateLimitExceeded(AzureException):
    pass

ERROR_CODE_EXCEPTION_MAPPING = {
    301: {
        "raise_exception": MovedPermanentlyError,
        "message": "The resource you are looking for is moved to another URL."
    },
    304: {
        "raise_exception": NotModifiedError,
        "message": "The requested resource has not been modified since the last time you accessed it."
    },
    400: {
        "raise_exception": BadRequestException,
        "message": "The request is missing or has a bad parameter."
    },
    401: {
        "raise_exception": BadCredentialsException,
        "message": "Invalid authorization credentials. Please check that your access token is " \
            "correct, has not expired, and has read access to the 'Code' and 'Build' scopes."
    },
    403: {
        "raise_exception": AuthException,
        "message": "User doesn't have permission to access the resource."
    },
    404: {
        "raise_exception": NotFoundException,
        "message": "The resource you have specified cannot be found"
    },
    409: {
        "raise_exception": ConflictError,
        "message": "The request could not be completed due to a conflict with the current state of the server."
    },
    422: {
        "raise_exception": UnprocessableError,
        "message": "The request was not able to process right now."
    },
    429: {
        "raise_exception": RateLimitExceeded,
        "message": "Request rate limit exceeded."
    },
    500: {
        "raise_exception": InternalServerError,
        "message": "An error has occurred at Azure's end processing this request."
    },
    502: {
        "raise_exception": InternalServerError,
        "message": "Azure's service is not currently available."
    },
    503: {
        "raise_exception": InternalServerError,
        "message": "Azure's service is not currently available."
    },
    504: {
        "raise_exception": InternalServerError,
        "message": "Azure's service is not currently available."
    },
}

def raise_for_error(resp, url):
    error_code = resp.status_code
    try:
        response_json = resp.json()
    except Exception: # pylint: disable=broad-except
        response_json = {}

    if error_code == 404:
        details = ERROR_CODE_EXCEPTION_MAPPING.get(error_code).get("message")
        message = "HTTP-error-code: 404, Error: {}. Please check that the following URL is valid "\
            "and you have permission to access it: {}".format(details, url)
    else:
        message = "HTTP-error-code: {}, Error: {} Url: {}".format(
            error_code, ERROR_CODE_EXCEPTION_MAPPING.get(error_code, {}) \
            .get("message", "Unknown Error") if response_json == {} else response_json, \
            url)

    exc = ERROR_CODE_EXCEPTION_MAPPING.get(error_code, {}).get("raise_exception", AzureException)
    raise exc(message) from None


class AzureGitClient(object):
    '''
    Thin Azure DevOps REST client. One instance is built per command from the connector config
    and shared by every stream, so they all reuse the same authenticated session.
    '''

    def __init__(self, config, session=None):
        self.org = config['org']
        self.page_size = config.get('page_size', DEFAULT_PAGE_SIZE)
        self.base_url = 'https://{}/{}'.format(config.get('domain', 'dev.azure.com'), self.org)
        self.session = session or requests.Session()
        self.session.auth = (config['user_name'], config['access_token'])
        self._repositories = {}

    def url(self, path, **params):
        query = urllib.parse.urlencode(params, safe='$')
        return '{}/{}?{}'.format(self.base_url, path.lstrip('/'), query)

    def request(self, url, method='GET', source=None):
        '''
        Perform an HTTP request, retrying transient failures.

        - Responses carrying a "Retry-After" header (Azure sends one for 429 and most 5xx), a
          429 or a 5xx are retried up to 7 times, waiting for the advertised delay or an
          exponentially growing one when there is none.
        - requests exceptions are retried with exponential backoff, except client errors (4xx)
          other than 429, which will not get better by retrying.

        Every attempt is timed as an http_request_duration metric tagged with source, the
        endpoint name.
        '''
        exponential_factor = 5
        tries = 0
        def backoff_value(response):
            nonlocal tries
            with suppress(TypeError, ValueError, AttributeError):
                return int(response.headers.get("Retry-After"))
            backoff_time = exponential_factor * (2 ** tries)
            tries += 1
            return backoff_time

        def execute_request(url, method):
            with metrics.http_request_timer(source) as timer:
                timer.tags['url'] = url

                response = self.session.request(method=method, url=url)

                timer.tags[metrics.Tag.http_status_code] = response.status_code
                timer.tags['header_retry-after'] = response.headers.get('retry-after')
            logger.debug('%s %s -> %s', method, url, response.status_code)
            return response

        backoff_on_exception = backoff.on_exception(backoff.expo,
                          (requests.exceptions.RequestException),
                          max_tries=7,
                          max_time=3600,
                          giveup=lambda e: e.response is not None and e.response.status_code != 429 and 400 <= e.response.status_code < 500,
                          factor=exponential_factor,
                          jitter=backoff.random_jitter,
                          logger=logger)

        # Other 4xx responses are permanent and go straight to raise_for_error
        backoff_on_predicate = backoff.on_predicate(backoff.runtime,
                          predicate=lambda r: r.headers.get("Retry-After", None) is not None or r.status_code == 429 or r.status_code >= 500,
                          max_tries=7,
                          max_time=3600,
                          value=backoff_value,
                          jitter=backoff.random_jitter,
                          logger=logger)

        return backoff_on_exception(backoff_on_predicate(execute_request))(url, method)

    def get(self, url, source=None):
        resp = self.request(url, source=source)
        if resp.status_code not in [200, 204]:
            raise_for_error(resp, url)
        return resp

    def get_all_pages(self, url, page_param_name='', skip_param_name='', no_stop_indicator=False,
                      source=None):
        '''
        Yield every page of a listing. Azure endpoints disagree on how they paginate:
        - a link header with rel="next" (offset paging with page_param_name/skip_param_name)
        - no indicator at all, so a short page is the only sign of the end (no_stop_indicator)
        - an x-ms-continuationtoken header (skip_param_name='continuationToken')
        '''
        offset = 0
        if page_param_name:
            baseurl = url + '&{}={}'.format(page_param_name, self.page_size)
        else:
            baseurl = url
        continuation_token = ''
        while True:
            if skip_param_name == 'continuationToken':
                if continuation_token:
                    cururl = baseurl + '&continuationToken={}'.format(continuation_token)
                else:
                    cururl = baseurl
            elif page_param_name:
                cururl = baseurl + '&{}={}'.format(skip_param_name, offset)
            else:
                cururl = baseurl

            r = self.get(cururl, source=source)
            yield r

            # The changes endpoint sends an empty link header when there are more pages
            if page_param_name and 'link' in r.headers and \
                    ('rel="next"' in r.headers['link'] or '' == r.headers['link']):
                offset += self.page_size
            elif no_stop_indicator:
                if r.json()['count'] < self.page_size:
                    break
                offset += self.page_size
            elif 'x-ms-continuationtoken' in r.headers:
                continuation_token = r.headers['x-ms-continuationtoken']
            else:
                break

    def get_repository(self, project, repo):
        # Builds are filtered by repository id, which needs one lookup per repository
        key = (project, repo)
        if key not in self._repositories:
            self._repositories[key] = self.get(
                self.url('{}/_apis/git/repositories/{}'.format(project, repo),
                    **{'api-version': API_VERSION}),
                source='repositories'
            ).json()
        return self._repositories[key]

    def list_projects(self):
        for response in self.get_all_pages(
            self.url('_apis/projects', **{'api-version': API_VERSION}),
            '$top',
            '$skip',
            True, # No link header to indicate availability of more data
            source='projects'
        ):
            for project in response.json()['value']:
                yield project

    def list_repositories(self, project):
        # This listing isn't paginated, asking for pages keeps returning the same data
        response = self.get(self.url('{}/_apis/git/repositories'.format(project),
            **{'api-version': API_VERSION}), source='repositories')
        return [repo for repo in response.json()['value'] if not repo.get('isDisabled')]
