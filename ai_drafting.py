"""Gemini-backed drafting of certificate body text."""

import logging

from google import genai
from google.genai import errors as genai_errors

logger = logging.getLogger(__name__)

DEFAULT_TONE = 'Formal and celebratory'
DEFAULT_MODEL = 'gemini-2.5-flash'
FALLBACK_TEXT = 'For your outstanding participation and effort.'


class DraftValidationError(ValueError):
    pass


class DraftGenerationError(RuntimeError):
    pass


def build_prompt(topic, tone) -> str:
    return (
        f'Write a concise, professional certificate body text (max 2 sentences) '
        f'for a certificate of: {topic}. Tone: {tone}. '
        f'Do not include placeholders like [Name], just the message.'
    )


def generate_certificate_text(topic, tone=DEFAULT_TONE, api_key=None, model=DEFAULT_MODEL, client=None) -> str:
    """Ask Gemini for body text.

    Raises DraftValidationError for a missing topic or credential and
    DraftGenerationError when the model call fails.
    """
    topic = str(topic or '').strip()
    if not topic:
        raise DraftValidationError('Please enter a topic.')
    if client is None:
        if not api_key:
            raise DraftValidationError('API key not configured. Set GOOGLE_API_KEY.')
        client = genai.Client(api_key=api_key)

    try:
        response = client.models.generate_content(model=model, contents=build_prompt(topic, tone))
    except (genai_errors.APIError, OSError, ValueError) as e:
        logger.error('Gemini draft failed for topic %r: %s', topic, e)
        raise DraftGenerationError('Failed to generate text using AI.') from e

    text = (getattr(response, 'text', None) or '').strip()
    return text or FALLBACK_TEXT


def apply_ai_draft(template, topic, tone=DEFAULT_TONE, **kwargs) -> str:
    """Replace the template body with a fresh draft; the body is untouched on failure."""
    text = generate_certificate_text(topic, tone, **kwargs)
    template.update_content(body_template=text)
    return text
