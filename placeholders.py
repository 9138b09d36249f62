import re


TOKEN_RE = re.compile(r'\{\{(\w+)\}\}')


def substitute(text, recipient):
    """Fill ``{{field}}`` tokens from a recipient.

    Tokens whose key is absent from the recipient are left as-is so a
    misspelt placeholder stays visible on the certificate.
    """
    if recipient is None:
        return text

    def _replace(match):
        value = recipient.lookup(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return TOKEN_RE.sub(_replace, text)


def placeholder_keys(text):
    return TOKEN_RE.findall(text or '')
