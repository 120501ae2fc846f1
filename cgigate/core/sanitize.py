"""Sanitization of untrusted strings placed in a script's environment.

Values never pass through a shell, but scripts may shell out with them and
they end up in logs, so control characters are dropped and shell
metacharacters are blanked out.
"""

# Characters removed outright: C0 controls and DEL.
_CONTROL_CHARACTERS = {code: None for code in (*range(32), 127)}

SHELL_METACHARACTERS = ";|&`$><()[]{}^!\"\\"

_SANITIZE_TABLE = str.maketrans(
    {**_CONTROL_CHARACTERS, **{char: " " for char in SHELL_METACHARACTERS}}
)
_CONTROL_TABLE = str.maketrans(_CONTROL_CHARACTERS)


def strip_control_characters(value: str) -> str:
    """Remove ASCII control characters and DEL.

    Used on its own to make untrusted text safe to write to a log line.
    """
    return value.translate(_CONTROL_TABLE)


def sanitize(value: str) -> str:
    """Sanitize an environment value.

    Control characters are removed and each shell metacharacter is replaced
    by a single space. The result is never longer than the input, and
    sanitizing it again returns it unchanged.
    """
    return value.translate(_SANITIZE_TABLE)
