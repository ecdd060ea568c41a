"""Address resolution: `az://` URIs and local paths -> `Location`.

Pure functions, no I/O. Two remote forms are accepted:

- canonical `az://<account>/<container>/<path>`
- legacy `az://<container>/<path>`, which needs a configured default account

A first segment that looks like a storage account name (3-24 lowercase
letters/digits) selects the canonical form.
"""

from __future__ import annotations

import re

from core.domain.models import Location, Scheme
from core.errors import AddressError

AZ_SCHEME = "az://"

_ACCOUNT_RE = re.compile(r"^[a-z0-9]{3,24}$")
_CONTAINER_RE = re.compile(r"^[A-Za-z0-9$][A-Za-z0-9-]*$")
_OTHER_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WILDCARD_CHARS = ("*", "?")


def is_remote(text: str) -> bool:
    return text.startswith(AZ_SCHEME)


def looks_like_account(segment: str) -> bool:
    return bool(_ACCOUNT_RE.match(segment))


def has_wildcard(path: str) -> bool:
    return any(ch in path for ch in _WILDCARD_CHARS)


def split_wildcard(path: str) -> tuple[str, str] | None:
    """Split `dir/sub/*.txt` into (`dir/sub/`, `*.txt`); None without wildcards."""

    positions = [path.find(ch) for ch in _WILDCARD_CHARS if ch in path]
    if not positions:
        return None
    first = min(positions)
    cut = path.rfind("/", 0, first) + 1
    return path[:cut], path[cut:]


def _collapse(path: str) -> str:
    return re.sub(r"/{2,}", "/", path)


def resolve(
    text: str,
    *,
    default_account: str | None = None,
    require_container: bool = True,
) -> Location:
    """Parse and validate an address.

    Raises `AddressError` on unsupported schemes, forbidden characters, a
    legacy URI without a default account, or a missing container when
    `require_container` is set.
    """

    if text is None or not text.strip():
        raise AddressError("Empty address")
    if _CONTROL_RE.search(text):
        raise AddressError("Address contains control characters", path=text)

    if is_remote(text):
        return _resolve_remote(
            text,
            default_account=default_account,
            require_container=require_container,
        )
    if _OTHER_SCHEME_RE.match(text):
        scheme = text.split("://", 1)[0]
        raise AddressError(f"Unsupported scheme '{scheme}://'; expected az:// or a local path", path=text)
    return _resolve_local(text)


def _resolve_remote(text: str, *, default_account: str | None, require_container: bool) -> Location:
    rest = text[len(AZ_SCHEME):]
    if "\\" in rest:
        raise AddressError("Backslashes are not allowed in az:// URIs", path=text)

    segments = [segment for segment in rest.split("/") if segment]
    if not segments:
        raise AddressError("Storage account or container name is required", path=text)

    trailing = rest.endswith("/")

    if looks_like_account(segments[0]):
        account: str | None = segments[0]
        container = segments[1] if len(segments) > 1 else None
        path_segments = segments[2:]
    else:
        if not default_account:
            raise AddressError(
                "Legacy URI az://<container>/<path> needs a default account "
                "(set AZST_DEFAULT_ACCOUNT or use az://<account>/<container>/<path>)",
                path=text,
            )
        if not looks_like_account(default_account):
            raise AddressError(f"Configured default account '{default_account}' is not a valid account name")
        account = default_account
        container = segments[0]
        path_segments = segments[1:]

    if container is not None and not _CONTAINER_RE.match(container):
        raise AddressError(f"Invalid container name '{container}'", path=text)
    if container is None and require_container:
        raise AddressError("Container is required: az://<account>/<container>/[path]", path=text)

    path = "/".join(path_segments)
    # A container root is always a prefix.
    is_prefix = trailing or not path
    return Location(
        scheme=Scheme.REMOTE,
        account=account,
        container=container,
        path=path,
        is_prefix=is_prefix,
    )


def _resolve_local(text: str) -> Location:
    path = text
    trailing = path.endswith("/") and path != "/"
    path = _collapse(path)
    if path != "/":
        path = path.rstrip("/") or "/"
    return Location(
        scheme=Scheme.LOCAL,
        path=path,
        is_prefix=trailing or path in ("/", ".", ".."),
    )
