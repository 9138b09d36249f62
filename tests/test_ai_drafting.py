from unittest.mock import MagicMock, patch

import pytest

from ai_drafting import (
    FALLBACK_TEXT,
    DraftGenerationError,
    DraftValidationError,
    apply_ai_draft,
    build_prompt,
    generate_certificate_text,
)
from models import Template


def _client(text=None, exc=None):
    client = MagicMock()
    if exc is not None:
        client.models.generate_content.side_effect = exc
    else:
        client.models.generate_content.return_value = MagicMock(text=text)
    return client


def test_prompt_mentions_topic_and_tone():
    prompt = build_prompt('Robotics Finals', 'Playful')
    assert 'Robotics Finals' in prompt
    assert 'Tone: Playful' in prompt


def test_generate_returns_trimmed_text():
    client = _client('  Well done on winning the robotics finals.  ')
    text = generate_certificate_text('Robotics Finals', client=client, model='gemini-test')
    assert text == 'Well done on winning the robotics finals.'
    kwargs = client.models.generate_content.call_args.kwargs
    assert kwargs['model'] == 'gemini-test'
    assert 'Robotics Finals' in kwargs['contents']


def test_empty_response_uses_fallback():
    assert generate_certificate_text('Chess', client=_client('')) == FALLBACK_TEXT


def test_missing_topic_or_key():
    with pytest.raises(DraftValidationError):
        generate_certificate_text('   ', client=_client('x'))
    with pytest.raises(DraftValidationError):
        generate_certificate_text('Chess', api_key='')


def test_client_built_from_api_key():
    with patch('ai_drafting.genai.Client') as client_cls:
        client_cls.return_value = _client('Great job.')
        assert generate_certificate_text('Chess', api_key='k-123') == 'Great job.'
        client_cls.assert_called_once_with(api_key='k-123')


def test_model_failure_leaves_body_untouched():
    template = Template()
    before = template.content.body_template
    with pytest.raises(DraftGenerationError):
        apply_ai_draft(template, 'Chess', client=_client(exc=OSError('network down')))
    assert template.content.body_template == before


def test_apply_ai_draft_replaces_body():
    template = Template()
    text = apply_ai_draft(template, 'Chess', client=_client('Champion of the chess league.'))
    assert template.content.body_template == text == 'Champion of the chess league.'
