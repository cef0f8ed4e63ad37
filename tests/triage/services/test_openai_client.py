"""Tests for triage.services.openai_client — research, classification and reply calls."""
import json

import httpx
import openai
import pytest
from unittest.mock import patch, MagicMock

from triage.errors import InvalidClassificationError, TransientCollaboratorError
from triage.models.classification import Classification
from triage.models.lead import MatchedReference
from triage.services.openai_client import OpenAIClassifier, OpenAIContentGenerator, _chat_json


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_chat_response(content_dict_or_str):
    """Build a MagicMock that looks like openai ChatCompletion response."""
    if isinstance(content_dict_or_str, dict):
        text = json.dumps(content_dict_or_str)
    else:
        text = content_dict_or_str
    message = MagicMock()
    message.content = text
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


def _request():
    return httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')


@pytest.fixture
def mock_client():
    client = MagicMock()
    with patch('triage.extensions.openai_client', client):
        yield client


# ── _chat_json ───────────────────────────────────────────────────────────────

class TestChatJson:

    def test_returns_parsed_object(self, mock_client):
        mock_client.chat.completions.create.return_value = _mock_chat_response({'a': 1})
        assert _chat_json('prompt', 'classifier') == {'a': 1}
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs['response_format'] == {"type": "json_object"}
        assert kwargs['messages'][0]['content'] == 'prompt'

    def test_timeout_is_transient(self, mock_client):
        mock_client.chat.completions.create.side_effect = openai.APITimeoutError(request=_request())
        with pytest.raises(TransientCollaboratorError) as exc_info:
            _chat_json('prompt', 'classifier')
        assert exc_info.value.collaborator == 'classifier'

    def test_connection_error_is_transient(self, mock_client):
        mock_client.chat.completions.create.side_effect = openai.APIConnectionError(request=_request())
        with pytest.raises(TransientCollaboratorError):
            _chat_json('prompt', 'content generator')

    def test_unparseable_response_is_transient(self, mock_client):
        mock_client.chat.completions.create.return_value = _mock_chat_response('not json {')
        with pytest.raises(TransientCollaboratorError):
            _chat_json('prompt', 'classifier')

    def test_non_object_response_is_transient(self, mock_client):
        mock_client.chat.completions.create.return_value = _mock_chat_response('[1, 2]')
        with pytest.raises(TransientCollaboratorError):
            _chat_json('prompt', 'classifier')

    def test_missing_client(self):
        with patch('triage.extensions.openai_client', None):
            with pytest.raises(RuntimeError, match='OPENAI_API_KEY'):
                _chat_json('prompt', 'classifier')


# ── OpenAIClassifier ─────────────────────────────────────────────────────────

class TestOpenAIClassifier:

    def test_research(self, mock_client, make_lead):
        mock_client.chat.completions.create.return_value = _mock_chat_response(
            {'report': 'Northwind ships freight.', 'industry': 'Software'})
        report = OpenAIClassifier().research(make_lead())
        assert report.report == 'Northwind ships freight.'
        assert report.industry == 'Software'
        prompt = mock_client.chat.completions.create.call_args.kwargs['messages'][0]['content']
        assert 'Northwind Logistics' in prompt

    def test_classify(self, mock_client, make_lead):
        mock_client.chat.completions.create.return_value = _mock_chat_response({
            'classification': 'high-quality', 'confidence': 0.91,
            'reasoning': 'Asked for a demo for 40 seats', 'existing_customer': False,
        })
        verdict = OpenAIClassifier().classify(make_lead(), 'report')
        assert verdict.classification is Classification.HIGH_QUALITY
        assert verdict.confidence == 0.91
        assert verdict.existing_customer is False

    def test_classify_outside_closed_set(self, mock_client, make_lead):
        mock_client.chat.completions.create.return_value = _mock_chat_response(
            {'classification': 'partner', 'confidence': 0.8})
        with pytest.raises(InvalidClassificationError):
            OpenAIClassifier().classify(make_lead(), 'report')


# ── OpenAIContentGenerator ───────────────────────────────────────────────────

class TestOpenAIContentGenerator:

    def test_generate_mentions_references(self, mock_client, make_lead):
        mock_client.chat.completions.create.return_value = _mock_chat_response(
            {'body': 'Hi Dana, ...', 'references': ['Tailspin Software', '']})
        refs = [MatchedReference(reference_id='ref-003', company='Tailspin Software', industry='Software')]

        content = OpenAIContentGenerator().generate(make_lead(), 'report', Classification.HIGH_QUALITY, refs)

        assert content.body == 'Hi Dana, ...'
        assert content.references == ('Tailspin Software',)
        prompt = mock_client.chat.completions.create.call_args.kwargs['messages'][0]['content']
        assert 'Tailspin Software (Software)' in prompt
        assert 'high-quality' in prompt

    def test_missing_body_is_empty(self, mock_client, make_lead):
        mock_client.chat.completions.create.return_value = _mock_chat_response({})
        content = OpenAIContentGenerator().generate(make_lead(), '', Classification.HIGH_QUALITY, [])
        assert content.body == ''
        assert content.references == ()
