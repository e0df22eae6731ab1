"""Path decoder for authorized-key datastore paths.

Decodes paths of the shape::

    /ietf-system:system/authentication/user[name='U']/authorized-key[name='K']/<leaf>

into typed key segments. Either quote character may delimit a key; a key
ends at the first occurrence of its quote character (no escaping).
"""
import re

from ..config.settings import DEFAULT_SYSTEM_ROOT
from ..errors import MalformedPathError
from .schema import AuthorizedKeyPath, DecodedPath, KeyLeaf, UserNamePath

# One list key predicate, delimited by either quote character
_KEY_PREDICATE = re.compile(r"""\[name=(?:'(?P<single>[^']*)'|"(?P<double>[^"]*)")\]""")


def watched_subtree(system_root: str = DEFAULT_SYSTEM_ROOT) -> str:
    """Subtree the service subscribes to."""
    return f"/{system_root}/authentication/user"


def authorized_key_selector(system_root: str = DEFAULT_SYSTEM_ROOT) -> str:
    """Selector for every node below any authorized-key entry."""
    return f"{watched_subtree(system_root)}/authorized-key//*"


class PathDecoder:
    """Decode datastore paths into AuthorizedKeyPath / UserNamePath."""

    def __init__(self, system_root: str = DEFAULT_SYSTEM_ROOT):
        self.system_root = system_root
        self._user_prefix = watched_subtree(system_root)

    def decode(self, path: str) -> DecodedPath:
        """
        Decode a path left to right.

        Raises:
            MalformedPathError: If the prefix does not match, a key is
                unterminated or empty, or the trailing leaf is unknown
        """
        if not path.startswith(self._user_prefix):
            raise MalformedPathError(f'Path "{path}" is outside the authentication subtree.')

        user_id, rest = self._take_key(path, path[len(self._user_prefix):])

        if rest == "/name":
            return UserNamePath(user_id=user_id)

        if not rest.startswith("/authorized-key"):
            raise MalformedPathError(f'Path "{path}" is not an authorized-key path.')
        key_id, rest = self._take_key(path, rest[len("/authorized-key"):])

        if not rest.startswith("/"):
            raise MalformedPathError(f'Path "{path}" does not name an authorized-key leaf.')
        try:
            leaf = KeyLeaf(rest[1:])
        except ValueError:
            raise MalformedPathError(f'Unknown value "{path}" change.')

        return AuthorizedKeyPath(user_id=user_id, key_id=key_id, leaf=leaf)

    def _take_key(self, path: str, rest: str) -> tuple[str, str]:
        """Consume one ``[name=<q>value<q>]`` predicate from ``rest``."""
        match = _KEY_PREDICATE.match(rest)
        if not match:
            raise MalformedPathError(f'Malformed or unterminated list key in "{path}".')

        value = match.group("single")
        if value is None:
            value = match.group("double")
        if not value:
            raise MalformedPathError(f'Empty list key in "{path}".')

        return value, rest[match.end():]


def _predicate(value: str) -> str:
    """Quote a list key with a quote character it does not contain."""
    if "'" not in value:
        return f"[name='{value}']"
    if '"' not in value:
        return f'[name="{value}"]'
    raise ValueError(f"Key {value!r} contains both quote characters")


def encode_user_path(user_id: str, system_root: str = DEFAULT_SYSTEM_ROOT) -> str:
    """Path of a user list entry."""
    return f"{watched_subtree(system_root)}{_predicate(user_id)}"


def encode_key_path(
    user_id: str,
    key_id: str,
    leaf: KeyLeaf | str | None = None,
    system_root: str = DEFAULT_SYSTEM_ROOT,
) -> str:
    """
    Build the path of an authorized-key entry, or of one of its leaves.

    Inverse of PathDecoder.decode for identifiers without both quotes.
    """
    path = f"{encode_user_path(user_id, system_root)}/authorized-key{_predicate(key_id)}"
    if leaf is None:
        return path
    return f"{path}/{KeyLeaf(leaf).value}"

