"""Rewrite vault-internal wiki links into portable Markdown links.

Uploaded notes leave the vault, so ``[[Some Note]]`` would be dead text
on the knowledge-base side.  Each wiki link becomes a regular Markdown
link to an ``obsidian://open`` URI that reopens the note locally:

- ``[[path|Display]]`` -> ``[Display](obsidian://open?vault=V&file=path.md)``
- ``[[path]]`` -> ``[path basename](obsidian://open?vault=V&file=path.md)``
- ``![[file.png]]`` -> ``*Embedded: [file.png](obsidian://open?vault=V&file=file.png)*``

``.md`` is appended to link targets without an extension; embeds keep
their target as-is since they are usually images or PDFs.
"""

from __future__ import annotations

import re
from urllib.parse import quote

_EMBED = re.compile(r"!\[\[([^\]]+)\]\]")
_ALIASED_LINK = re.compile(r"\[\[([^\]|]+)\|([^\]]+)\]\]")
_LINK = re.compile(r"\[\[([^\]]+)\]\]")

# Same unreserved set as JavaScript's encodeURIComponent.
_URI_SAFE = "-_.!~*'()"


def _uri(vault_name: str, file_path: str) -> str:
    return (
        f"obsidian://open?vault={quote(vault_name, safe=_URI_SAFE)}"
        f"&file={quote(file_path, safe=_URI_SAFE)}"
    )


def _with_extension(file_path: str) -> str:
    return file_path if "." in file_path else f"{file_path}.md"


def _basename(file_path: str) -> str:
    return file_path.rsplit("/", 1)[-1] or file_path


def rewrite_wiki_links(text: str, vault_name: str) -> str:
    """Return *text* with every wiki link and embed rewritten."""

    def embed(match: re.Match[str]) -> str:
        target = match.group(1)
        return f"*Embedded: [{_basename(target)}]({_uri(vault_name, target)})*"

    def aliased(match: re.Match[str]) -> str:
        target, display = match.group(1), match.group(2)
        return f"[{display}]({_uri(vault_name, _with_extension(target))})"

    def plain(match: re.Match[str]) -> str:
        target = match.group(1)
        return f"[{_basename(target)}]({_uri(vault_name, _with_extension(target))})"

    text = _EMBED.sub(embed, text)
    text = _ALIASED_LINK.sub(aliased, text)
    return _LINK.sub(plain, text)
