"""Three-way merge and diff utilities for the sync engine.

Uses the ``diff-match-patch`` library for edit scripts and patching, and
``difflib`` for unified diff generation.

Key design choices:

* Text is split into blocks at fenced code boundaries (lines starting
  with a backtick fence).  A fenced block is merged as one unit; when the
  three texts split into different block counts the whole text is merged
  as a single block.
* Within a block, base-to-ours and base-to-theirs are diffed separately
  and replayed in base coordinates.  Insertions at the same base offset
  land theirs first, then ours.  Overlapping deletions combine.
* Edits that overlap in any other way fall back to applying the
  base-to-theirs patch on top of ours.
* No conflict markers are ever produced.  If the patch does not apply
  cleanly, the result is ours followed by every line of theirs that ours
  does not already contain.  This union is lossy on purpose; list
  reordering and competing paragraph edits are known weak spots.
"""

from __future__ import annotations

import difflib
import re
from typing import NamedTuple

from diff_match_patch import diff_match_patch

_LINE_SPLIT = re.compile(r"\r?\n")
_FENCE = re.compile(r"^```")


class Block(NamedTuple):
    """A run of lines that is merged as one unit."""

    type: str  # "code" or "text"
    content: str


class Hunk(NamedTuple):
    """A contiguous edit: base ``[start, end)`` replaced by ``text``."""

    start: int
    end: int
    text: str


def split_into_blocks(text: str) -> list[Block]:
    """Split *text* into text blocks and fenced code blocks.

    A fence line opens a code block that runs up to and including the next
    fence line.  An unterminated fence extends to the end of the text.
    """
    blocks: list[Block] = []
    buf: list[str] = []
    buf_type = "text"
    in_fence = False

    for line in _LINE_SPLIT.split(text):
        if _FENCE.match(line):
            if not in_fence:
                if buf:
                    blocks.append(Block(buf_type, "\n".join(buf)))
                buf = [line]
                buf_type = "code"
                in_fence = True
            else:
                buf.append(line)
                blocks.append(Block("code", "\n".join(buf)))
                buf = []
                buf_type = "text"
                in_fence = False
            continue
        buf.append(line)

    if buf:
        blocks.append(Block(buf_type, "\n".join(buf)))
    return blocks


def compute_hunks(base: str, variant: str) -> list[Hunk]:
    """Return the base-to-*variant* edits as hunks in base coordinates."""
    dmp = diff_match_patch()
    diffs = dmp.diff_main(base, variant)
    dmp.diff_cleanupSemantic(diffs)

    hunks: list[Hunk] = []
    pos = 0
    start: int | None = None
    inserted: list[str] = []
    for op, data in diffs:
        if op == dmp.DIFF_EQUAL:
            if start is not None:
                hunks.append(Hunk(start, pos, "".join(inserted)))
                start = None
                inserted = []
            pos += len(data)
            continue
        if start is None:
            start = pos
        if op == dmp.DIFF_DELETE:
            pos += len(data)
        else:
            inserted.append(data)
    if start is not None:
        hunks.append(Hunk(start, pos, "".join(inserted)))
    return hunks


def _overlaps(a: Hunk, b: Hunk) -> bool:
    if a == b:
        return False
    if a.start == a.end and b.start == b.end:
        # Two insertions never overlap; equal offsets are ordered later.
        return False
    if a.start == a.end:
        return b.start < a.start < b.end
    if b.start == b.end:
        return a.start < b.start < a.end
    if not a.text and not b.text:
        # Overlapping deletions combine.
        return False
    return max(a.start, b.start) < min(a.end, b.end)


def _replay(base: str, ours: list[Hunk], theirs: list[Hunk]) -> str:
    theirs_set = set(theirs)
    ours = [h for h in ours if h not in theirs_set]

    deleted = [False] * len(base)
    inserts: dict[int, list[str]] = {}
    # Theirs are queued first so they precede ours at a shared offset.
    for hunk in theirs + ours:
        for i in range(hunk.start, hunk.end):
            deleted[i] = True
        if hunk.text:
            inserts.setdefault(hunk.start, []).append(hunk.text)

    out: list[str] = []
    for i in range(len(base) + 1):
        out.extend(inserts.get(i, ()))
        if i < len(base) and not deleted[i]:
            out.append(base[i])
    return "".join(out)


def merge_union(ours: str, theirs: str) -> str:
    """Keep *ours* and append lines of *theirs* that *ours* lacks."""
    ours_lines = set(_LINE_SPLIT.split(ours))
    extras = [
        line for line in _LINE_SPLIT.split(theirs) if line not in ours_lines
    ]
    return "\n".join(part for part in (ours, "\n".join(extras)) if part)


def apply_patch(base: str, ours: str, theirs: str) -> str:
    """Apply the base-to-theirs patch onto *ours*, or fall back to a union."""
    dmp = diff_match_patch()
    patches = dmp.patch_make(base, theirs)
    result, applied = dmp.patch_apply(patches, ours)
    if not all(applied):
        return merge_union(ours, theirs)
    return result


def merge_block(base: str, ours: str, theirs: str) -> str:
    """Merge one block of text."""
    if ours == theirs:
        return ours
    ours_hunks = compute_hunks(base, ours)
    theirs_hunks = compute_hunks(base, theirs)
    for mine in ours_hunks:
        if any(_overlaps(mine, other) for other in theirs_hunks):
            return apply_patch(base, ours, theirs)
    return _replay(base, ours_hunks, theirs_hunks)


def merge_markdown(base: str, ours: str, theirs: str) -> str:
    """Three-way merge of Markdown text.

    Args:
        base: The common ancestor.
        ours: The local version.
        theirs: The remote version.

    Returns:
        The merged text.  Deterministic for identical inputs, with
        ``merge_markdown(b, b, t) == t`` and ``merge_markdown(b, o, b) == o``.
    """
    if ours == base:
        return theirs
    if theirs == base:
        return ours

    base_blocks = split_into_blocks(base)
    ours_blocks = split_into_blocks(ours)
    theirs_blocks = split_into_blocks(theirs)

    if len(base_blocks) == len(ours_blocks) == len(theirs_blocks):
        return "\n".join(
            merge_block(b.content, o.content, t.content)
            for b, o, t in zip(base_blocks, ours_blocks, theirs_blocks)
        )
    return merge_block(base, ours, theirs)


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The original content.
        new_content: The modified content.
        label_old: Label for the old file in the diff header.
        label_new: Label for the new file in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    old_lines = old_content.splitlines(True)
    new_lines = new_content.splitlines(True)

    diff_lines = difflib.unified_diff(
        old_lines,
        new_lines,
        fromfile=label_old,
        tofile=label_new,
    )

    return "".join(diff_lines)
