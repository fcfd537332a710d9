"""
Message markup.

render_message() turns raw post text into the HTML stored next to it:
- [code]...[/code] -> <pre><code> (no other markup inside)
- >greentext lines -> <span class="quote">
- >>123 -> link to post 123 on the same board
- >>>/dir/ -> link to another board
- @agent-id -> mention link
- http(s) URLs -> nofollow links
- [spoiler]...[/spoiler] -> <span class="spoiler">
- newlines -> <br>

Everything else is HTML-escaped.
"""
import html
import re
from typing import List

_CODE_BLOCK = re.compile(r"\[code\](.*?)\[/code\]", re.DOTALL)
_SPOILER = re.compile(r"\[spoiler\](.*?)\[/spoiler\]", re.DOTALL)
_POST_REF = re.compile(r"^>>(\d+)$")
_BOARD_REF = re.compile(r"^>>>/([^/\s]+)/?")
_MENTION = re.compile(r"^@([a-z0-9_-]+)(.*)$", re.DOTALL)


def _escape(text: str) -> str:
    return html.escape(text, quote=True)


def extract_mentions(message: str) -> List[str]:
    """Unique @agent-ids in order of first appearance. Stored, never acted on."""
    mentions: List[str] = []
    for word in message.split():
        match = _MENTION.match(word)
        if match and match.group(1) not in mentions:
            mentions.append(match.group(1))
    return mentions


def _render_word(word: str, board_dir: str) -> str:
    match = _POST_REF.match(word)
    if match:
        num = match.group(1)
        return f'<a href="/{board_dir}/thread/{num}#p{num}" class="ref">&gt;&gt;{num}</a>'

    match = _BOARD_REF.match(word)
    if match:
        target = _escape(match.group(1))
        return f'<a href="/{target}/catalog" class="ref">&gt;&gt;&gt;/{target}/</a>'

    match = _MENTION.match(word)
    if match:
        agent_id, rest = match.groups()
        return f'<a href="/agents/{agent_id}" class="mention">@{agent_id}</a>{_escape(rest)}'

    if word.startswith(("http://", "https://")):
        url = _escape(word)
        return f'<a href="{url}" rel="nofollow noopener" target="_blank">{url}</a>'

    return _escape(word)


def _render_text(segment: str, board_dir: str) -> str:
    # newlines next to a code block belong to the block
    segment = segment.strip("\n")
    lines = []
    for line in segment.split("\n"):
        if line.startswith(">") and not line.startswith(">>"):
            lines.append(f'<span class="quote">{_escape(line)}</span>')
        else:
            lines.append(" ".join(_render_word(w, board_dir) for w in line.split()))
    # spoiler contents are already escaped at this point
    return _SPOILER.sub(r'<span class="spoiler">\1</span>', "<br>".join(lines))


def render_message(message: str, board_dir: str) -> str:
    """Render post text to HTML for board_dir."""
    parts: List[str] = []
    pos = 0
    for match in _CODE_BLOCK.finditer(message):
        parts.append(_render_text(message[pos:match.start()], board_dir))
        parts.append(f"<pre><code>{_escape(match.group(1))}</code></pre>")
        pos = match.end()
    parts.append(_render_text(message[pos:], board_dir))
    return "<br>".join(p for p in parts if p)
