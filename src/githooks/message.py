"""Commit message cleanup and structure."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path


_DIFF_RE = re.compile(r"\ndiff --git .*", re.DOTALL)
_COMMENT_RE = re.compile(r"^#.*$", re.MULTILINE)
_TRAILING_WS_RE = re.compile(r"[ \t\f]+$", re.MULTILINE)
_BLANKS_RE = re.compile(r"\n{3,}")
_BLOCK_SPLIT_RE = re.compile(r"(?<=\n)\n+")
_FOOTER_COMMENT_RE = re.compile(r"^\[[\w-]+:")
_FOOTER_LINE_RE = re.compile(r"^([\w-]+):\s*(.*)$")


def clean_message(text: str) -> str:
    """Clean a message the way ``git commit`` does with ``--cleanup=strip``.

    Anything after an appended ``diff --git`` (``git commit -v``) is dropped.
    """
    text = _DIFF_RE.sub("", text)
    text = _COMMENT_RE.sub("", text)
    text = _TRAILING_WS_RE.sub("", text)
    text = _BLANKS_RE.sub("\n\n", text)
    text = text.lstrip("\n").rstrip("\n") + "\n"
    if not text.strip():
        return ""
    return text


def read_message_file(path: str | Path, encoding: str = "utf-8") -> str:
    return clean_message(Path(path).read_text(encoding=encoding))


@dataclass
class CommitMessage:
    """A commit message split into title, body and footer.

    Blocks are runs of non-blank lines. The title is the first block when it
    is a single line, the footer is the last block when every line is a
    ``Key: value`` pair (or a bracketed ``[key: ...]`` comment) and the body
    is whatever lies in between.
    """

    title: str | None = None
    body: str | None = None
    footer: dict[str, list[tuple[str, str]]] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> "CommitMessage":
        if text and not text.endswith("\n"):
            text += "\n"
        blocks = [block for block in _BLOCK_SPLIT_RE.split(text) if block]
        title = None
        if blocks and blocks[0].count("\n") == 1:
            title = blocks.pop(0)
        footer: dict[str, list[tuple[str, str]]] = {}
        if blocks:
            parsed = _parse_footer(blocks[-1])
            if parsed is not None:
                footer = parsed
                blocks.pop()
        body = "\n".join(blocks) if blocks else None
        return cls(
            title=title.rstrip("\n") if title is not None else None,
            body=body,
            footer=footer,
        )

    def footer_values(self, key: str) -> list[str]:
        return [value for _name, value in self.footer.get(key.lower(), [])]

    def footer_keys(self) -> list[str]:
        return list(self.footer)

    def as_string(self) -> str:
        blocks = []
        if self.title:
            blocks.append(self.title + "\n")
        if self.body:
            blocks.append(self.body if self.body.endswith("\n") else self.body + "\n")
        if self.footer:
            blocks.append("".join(f"{name}: {value}\n" for pairs in self.footer.values() for name, value in pairs))
        return "\n".join(blocks)


def _parse_footer(block: str) -> dict[str, list[tuple[str, str]]] | None:
    footer: dict[str, list[tuple[str, str]]] = {}
    in_comment = False
    for line in block.splitlines():
        if in_comment:
            in_comment = not line.endswith("]")
        elif _FOOTER_COMMENT_RE.match(line):
            in_comment = not line.endswith("]")
        else:
            match = _FOOTER_LINE_RE.match(line)
            if not match:
                return None
            footer.setdefault(match.group(1).lower(), []).append((match.group(1), match.group(2)))
    return footer or None
