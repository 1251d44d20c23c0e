import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from planner.utils import breakdown
from planner.utils.breakdown import GenerationError, OpenAIBreakdownGenerator, parse_reply


def _fake_client(content=None, error=None):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


def test_parse_reply_accepts_feature_specs_alias():
    content = json.dumps({'features': [
        {'name': 'Login', 'description': 'Email login', 'featureSpecs': 'OAuth2 flow'},
        {'name': 'Export', 'description': 'CSV export', 'technicalDetail': 'Streamed download'},
    ]})
    drafts = parse_reply(content)
    assert [d.name for d in drafts] == ['Login', 'Export']
    assert [d.technical_detail for d in drafts] == ['OAuth2 flow', 'Streamed download']


def test_parse_reply_accepts_bare_list_and_empty():
    assert parse_reply('[]') == []
    drafts = parse_reply(json.dumps([{'name': 'A', 'description': 'B', 'technicalDetail': 'C'}]))
    assert drafts[0].description == 'B'


def test_parse_reply_rejects_bad_payloads():
    with pytest.raises(GenerationError):
        parse_reply('not json')
    with pytest.raises(GenerationError):
        parse_reply(json.dumps({'features': [{'description': 'missing name'}]}))


def test_prompts_include_context():
    p = breakdown.application_prompt('Todo', 'Tracks tasks', 'Add and complete tasks', 'Reminders')
    assert 'Todo' in p and 'Tracks tasks' in p and 'Reminders' in p
    assert 'Database integrations should not be a feature' in p
    bulk = breakdown.bulk_feature_prompt('Todo', 'Backend', 'Sync', 'Offline queue')
    assert 'Type of features needed: Backend' in bulk
    assert 'Specific feature requirements: Offline queue' in bulk


def test_generator_without_api_key_fails(monkeypatch):
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    gen = OpenAIBreakdownGenerator(api_key=None)
    with pytest.raises(GenerationError):
        gen.generate('anything')


def test_generator_uses_json_mode_and_parses_reply():
    gen = OpenAIBreakdownGenerator(model='gpt-test', api_key='sk-test')
    content = json.dumps({'features': [{'name': 'Share', 'description': 'Share lists', 'technicalDetail': 'Links'}]})
    gen._client, calls = _fake_client(content=content)
    drafts = gen.generate('prompt text')
    assert [d.name for d in drafts] == ['Share']
    assert calls[0]['model'] == 'gpt-test'
    assert calls[0]['response_format'] == {'type': 'json_object'}
    assert calls[0]['messages'][-1]['content'] == 'prompt text'


def test_generator_wraps_sdk_errors():
    gen = OpenAIBreakdownGenerator(api_key='sk-test')
    gen._client, _ = _fake_client(error=OpenAIError('connection reset'))
    with pytest.raises(GenerationError) as exc:
        gen.generate('prompt')
    assert 'connection reset' in str(exc.value)
