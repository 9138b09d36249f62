from models import Recipient
from placeholders import placeholder_keys, substitute


def test_substitutes_known_keys_and_keeps_unknown():
    recipient = Recipient(id='a1', name='Jane Doe')
    text = 'Congrats {{name}}, ID {{id}}, dept {{dept}}'
    assert substitute(text, recipient) == 'Congrats Jane Doe, ID a1, dept {{dept}}'


def test_no_recipient_returns_text_unchanged():
    text = 'Hello {{name}}'
    assert substitute(text, None) is text


def test_lookup_is_case_sensitive():
    recipient = Recipient(id='a1', name='Jane')
    assert substitute('{{Name}} / {{name}}', recipient) == '{{Name}} / Jane'


def test_extra_fields_and_empty_values():
    recipient = Recipient(id='x', name='Bob', email='', extra={'team': 'Blue'})
    assert substitute('{{team}}|{{email}}|{{rank}}', recipient) == 'Blue||{{rank}}'


def test_text_without_tokens_is_untouched():
    recipient = Recipient(id='x', name='Bob')
    text = 'Plain {text} with {{ spaced }} and {{not-a-word}} braces'
    assert substitute(text, recipient) == text


def test_each_token_replaced_once():
    recipient = Recipient(id='x', name='{{id}}')
    # values are not re-scanned
    assert substitute('{{name}} {{name}}', recipient) == '{{id}} {{id}}'


def test_placeholder_keys():
    assert placeholder_keys('a {{name}} b {{dept}} {{name}}') == ['name', 'dept', 'name']
    assert placeholder_keys(None) == []
