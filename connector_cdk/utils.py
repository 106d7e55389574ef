# Standard Library
import copy
import datetime
import json
import os
import re

# 3rd Party
import jsonschema
import psutil
import pytz
import singer

# Local
from connector_cdk.errors import ConfigurationError

REDACTED = 'REDACTED'


def get_abs_path(path, module_file):
    return os.path.join(os.path.dirname(os.path.realpath(module_file)), path)

def load_json(path):
    with open(path) as file:
        return json.load(file)

def snake_case(name):
    name = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    name = re.sub(r'([a-z\d])([A-Z])', r'\1_\2', name)
    return name.replace('-', '_').lower()

def to_datetime(value):
    '''
    Coerce a cursor value into a UTC datetime. Numbers are epoch milliseconds, strings are
    anything singer.utils.strptime_to_utc understands, and naive values are assumed to be UTC.
    '''
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise TypeError('Cannot convert {!r} to a datetime'.format(value))
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value / 1000.0, tz=pytz.UTC)
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return pytz.UTC.localize(value)
        return value.astimezone(pytz.UTC)
    if isinstance(value, datetime.date):
        return pytz.UTC.localize(datetime.datetime(value.year, value.month, value.day))
    return singer.utils.strptime_to_utc(value)

def to_millis(value):
    return int(to_datetime(value).timestamp() * 1000)

def memory_usage():
    return psutil.Process(os.getpid()).memory_info().rss


def remove_definitions_prefix(obj):
    if isinstance(obj, dict):
        new_obj = {}
        for key, value in obj.items():
            if key == '$ref' and isinstance(value, str) and value.startswith('#/definitions/'):
                new_obj[key] = value.replace('#/definitions/', '')
            else:
                new_obj[key] = remove_definitions_prefix(value)
        return new_obj
    elif isinstance(obj, list):
        return [remove_definitions_prefix(item) for item in obj]
    else:
        return obj

def load_schema(path):
    schema = load_json(path)
    refs = schema.pop('definitions', {})
    if refs:
        schema = singer.resolve_schema_references(
            remove_definitions_prefix(schema),
            remove_definitions_prefix(refs)
        )
    return schema

def load_schemas(schemas_dir):
    schemas = {}
    for filename in sorted(os.listdir(schemas_dir)):
        if not filename.endswith('.json'):
            continue
        schemas[filename.replace('.json', '')] = load_schema(os.path.join(schemas_dir, filename))
    return schemas


def _connection_specification(spec):
    # Accept either the AirbyteSpec message, its spec payload, or the bare JSON schema
    spec = getattr(spec, 'spec', spec) or {}
    return spec.get('connectionSpecification', spec)

def with_defaults(config, spec):
    def fill(obj, schema):
        result = dict(obj)
        for name, prop in schema.get('properties', {}).items():
            if name not in result:
                if 'default' in prop:
                    result[name] = copy.deepcopy(prop['default'])
            elif isinstance(result[name], dict) and prop.get('type') == 'object':
                result[name] = fill(result[name], prop)
        return result

    return fill(config or {}, _connection_specification(spec))

def validate_config(config, spec):
    schema = _connection_specification(spec)
    validator = jsonschema.Draft4Validator(schema)
    errors = sorted(validator.iter_errors(config), key=lambda e: list(e.absolute_path))
    if errors:
        details = []
        for error in errors:
            path = '.'.join(str(p) for p in error.absolute_path) or '<root>'
            details.append('{}: {}'.format(path, error.message))
        raise ConfigurationError('Config validation failed: {}'.format('; '.join(details)))
    return config

def _walk_secrets(config, spec, on_secret):
    def walk(obj, schema):
        if not isinstance(obj, dict):
            return obj
        result = dict(obj)
        alternatives = [schema] + schema.get('oneOf', []) + schema.get('anyOf', [])
        for alternative in alternatives:
            for name, prop in alternative.get('properties', {}).items():
                if name not in result:
                    continue
                if prop.get('airbyte_secret'):
                    result[name] = on_secret(result[name])
                else:
                    result[name] = walk(result[name], prop)
        return result

    return walk(copy.deepcopy(config or {}), _connection_specification(spec))

def redact_config(config, spec):
    return _walk_secrets(config, spec, lambda value: REDACTED)

def secret_values(config, spec):
    '''
    Every non-empty value of the config marked airbyte_secret, e.g. to mask it in logs.
    '''
    secrets = []
    def collect(value):
        if isinstance(value, str) and value and value not in secrets:
            secrets.append(value)
        return value

    _walk_secrets(config, spec, collect)
    return secrets
