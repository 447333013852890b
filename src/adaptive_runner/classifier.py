# classifier.py
# Step Classifier: turns a free-form numbered instruction into typed Steps.
#
# Pure functions, no I/O. A single rule table is tried in priority order and
# the first rule that matches a fragment decides its ActionType:
#
#   directory creation → file creation → list files → read file
#   → shell command → file/line counting → unknown
#
# Splitting only ever happens at numeric "N." markers, never on punctuation
# inside the content of a step.

import re
import shlex
from collections.abc import Callable

from adaptive_runner.models import ActionType, Step

# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------

# "N." followed by whitespace, at the start of the text or after whitespace.
_INLINE_MARKER = re.compile(r"(?:^|(?<=\s))(\d+)\.\s+")
# "N." at the start of a line.
_LINE_MARKER = re.compile(r"^[ \t]*(\d+)\.\s+", re.MULTILINE)
_QUOTED_SPAN = re.compile(r'"[^"\n]*"')

# Filenames that are routinely written without an extension.
DOTLESS_FILENAMES = frozenset(
    {
        "Dockerfile",
        "Containerfile",
        "Makefile",
        "Procfile",
        "Gemfile",
        "Rakefile",
        "Vagrantfile",
        "Jenkinsfile",
        "LICENSE",
        "README",
        "CHANGELOG",
    }
)

KNOWN_BINARIES = (
    "ls", "echo", "find", "wc", "cat", "date", "grep", "git", "npm", "npx",
    "node", "python", "python3", "pip", "mkdir", "touch", "cp", "mv", "rm",
    "pwd", "docker", "curl", "tar", "chmod", "head", "tail", "sort", "sed",
    "awk", "du", "df", "whoami", "uname", "make", "base64", "md5sum",
)

_BINARY = "(?:" + "|".join(re.escape(name) for name in KNOWN_BINARIES) + r")\b"


def _markers(text: str, pattern: re.Pattern) -> list[re.Match]:
    """All marker matches in `text` that do not sit inside a quoted span."""
    quoted = [m.span() for m in _QUOTED_SPAN.finditer(text)]
    return [
        m for m in pattern.finditer(text)
        if not any(start <= m.start() < end for start, end in quoted)
    ]


def is_single_line_packed(text: str) -> bool:
    """True when some line carries two or more numeric markers."""
    return any(len(_markers(line, _INLINE_MARKER)) >= 2 for line in text.splitlines())


def split_fragments(text: str) -> list[str]:
    """
    Cut the instruction into one fragment per numbered item.

    Text before the first marker is a preamble and is dropped. In the
    multi-line form, unnumbered lines continue the item above them.
    """
    pattern = _INLINE_MARKER if is_single_line_packed(text) else _LINE_MARKER
    found = _markers(text, pattern)

    fragments: list[str] = []
    for index, match in enumerate(found):
        end = found[index + 1].start() if index + 1 < len(found) else len(text)
        body = text[match.end():end]
        fragment = " ".join(line.strip() for line in body.splitlines() if line.strip())
        if fragment:
            fragments.append(fragment)
    return fragments


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean_path(value: str) -> str:
    path = value.strip().strip("\"'`").rstrip(",;:")
    if len(path) > 1 and path.endswith(".") and not path.endswith(".."):
        path = path[:-1]
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def _unquote(value: str) -> str:
    text = value.strip()
    if len(text) >= 3 and text.endswith(".") and text[0] == text[-2] and text[0] in "\"'`":
        text = text[:-1]
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'`":
        return text[1:-1]
    return text


def _looks_like_file(target: str, explicit: bool) -> bool:
    name = target.rsplit("/", 1)[-1]
    if not name or name in (".", ".."):
        return False
    if explicit or name in DOTLESS_FILENAMES:
        return True
    return "." in name


def _looks_like_path(target: str) -> bool:
    if target.rsplit("/", 1)[-1] in DOTLESS_FILENAMES:
        return True
    return "/" in target or "." in target.strip(".")


# ---------------------------------------------------------------------------
# Rules: each returns the Step fields it extracted, or None
# ---------------------------------------------------------------------------

_DIRECTORY_PATTERNS = (
    re.compile(
        r"\b(?:create|make|add)\s+(?:a\s+)?(?:new\s+)?(?:directory|folder|dir)\s+"
        r"(?:(?:called|named)\s+)?(?P<target>[^\s,;]+)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:create|make|add)\s+(?:a\s+)?(?:new\s+)?(?P<target>[^\s,;]+?)/?\s+(?:directory|folder)\b",
        re.IGNORECASE,
    ),
)

_FILE_PATTERN = re.compile(
    r"\b(?:create|write|make|add)\s+(?:a\s+)?(?:new\s+)?(?P<keyword>file\s+)?"
    r"(?:(?:called|named)\s+)?(?P<target>[^\s,;]+)"
    r"(?:\s+(?:with|containing)(?:\s+(?:content|contents|text))?:?\s+(?P<content>.+?))?\s*$",
    re.IGNORECASE | re.DOTALL,
)

_LIST_PATTERN = re.compile(
    r"\blist\s+(?:all\s+)?(?:the\s+)?(?:files|contents)"
    r"(?:\s+(?:in|of|under|inside)\s+(?:the\s+)?(?P<target>[^\s,;]+))?",
    re.IGNORECASE,
)

_READ_PATTERN = re.compile(
    r"\b(?:read|show|cat|view|display|print)\s+(?:the\s+)?(?:contents?\s+of\s+)?"
    r"(?:(?:the\s+)?file\s+)?(?P<target>[^\s,;]+)",
    re.IGNORECASE,
)

_COMMAND_PATTERNS = (
    re.compile(r"`(?P<cmd>[^`]+)`"),
    re.compile(
        r"\b(?:execute|run)\s+(?:a\s+|the\s+)?(?:bash\s+|shell\s+)?(?:command|script)?\s*:\s*(?P<cmd>.+)$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"\b(?:using|with|via|in)\s+(?:the\s+)?(?:bash|shell)\s*:\s*(?P<cmd>.+)$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(r"\b(?:using|with|via)\s*:\s*(?P<cmd>.+)$", re.IGNORECASE | re.DOTALL),
    re.compile(
        rf"\b(?:execute|run)\s+(?:bash\s+|shell\s+)?(?:command\s+)?(?P<cmd>{_BINARY}.*)$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(rf":\s*(?P<cmd>{_BINARY}.*)$", re.DOTALL),
    re.compile(rf"^(?P<cmd>{_BINARY}.*)$", re.DOTALL),
)

_USING_CUE = re.compile(r"\busing\s*:\s*\S", re.IGNORECASE)

_COUNT_PATTERN = re.compile(
    r"\bcount\s+(?:the\s+)?(?:number\s+of\s+)?(?:all\s+)?(?:total\s+)?(?P<what>files|lines)"
    r"(?:\s+(?:of\s+code\s+)?(?:in|under|inside)\s+(?:all\s+)?(?P<target>[^\s,;]+))?",
    re.IGNORECASE,
)


def _extract_command(fragment: str) -> str | None:
    for pattern in _COMMAND_PATTERNS:
        match = pattern.search(fragment)
        if match and match.group("cmd").strip():
            return match.group("cmd").strip()
    return None


def _match_directory(fragment: str) -> dict | None:
    for pattern in _DIRECTORY_PATTERNS:
        match = pattern.search(fragment)
        if match:
            target = _clean_path(match.group("target"))
            if target and target.lower() not in ("file", "a", "new"):
                return {"target": target}
    return None


def _match_file(fragment: str) -> dict | None:
    match = _FILE_PATTERN.search(fragment)
    if not match:
        return None
    target = _clean_path(match.group("target"))
    if not _looks_like_file(target, explicit=bool(match.group("keyword"))):
        return None
    raw_content = match.group("content") or ""
    content = _unquote(raw_content)
    # "with X using: cmd" means the file is produced by a command.
    if content == raw_content.strip() and _USING_CUE.search(content):
        return None
    return {"target": target, "content": content}


def _match_list(fragment: str) -> dict | None:
    if _extract_command(fragment):
        return None
    match = _LIST_PATTERN.search(fragment)
    if not match:
        return None
    return {"target": _clean_path(match.group("target") or ".") or "."}


def _match_read(fragment: str) -> dict | None:
    if _extract_command(fragment):
        return None
    match = _READ_PATTERN.search(fragment)
    if not match:
        return None
    target = _clean_path(match.group("target"))
    if not _looks_like_path(target):
        return None
    return {"target": target}


def _match_command(fragment: str) -> dict | None:
    command = _extract_command(fragment)
    if command is None:
        return None
    return {"content": command}


def _count_command(what: str, target: str | None) -> str:
    root, name_filter = ".", ""
    if target:
        is_extension = (
            target.startswith("*.")
            or (target.startswith(".") and target not in (".", "..") and "/" not in target)
        )
        if is_extension:
            name_filter = " -name " + shlex.quote("*" + target.lstrip("*"))
        else:
            root = target
    find = f"find {shlex.quote(root)} -type f{name_filter}"
    if what == "lines":
        return f"{find} -exec cat {{}} + | wc -l"
    return f"{find} | wc -l"


def _match_count(fragment: str) -> dict | None:
    match = _COUNT_PATTERN.search(fragment)
    if not match:
        return None
    target = _clean_path(match.group("target")) if match.group("target") else None
    what = match.group("what").lower()
    return {"target": target, "content": _count_command(what, target)}


RULES: list[tuple[ActionType, Callable[[str], dict | None]]] = [
    (ActionType.CREATE_DIRECTORY, _match_directory),
    (ActionType.CREATE_FILE, _match_file),
    (ActionType.LIST_FILES, _match_list),
    (ActionType.READ_FILE, _match_read),
    (ActionType.RUN_COMMAND, _match_command),
    (ActionType.COUNT_FILES, _match_count),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify_fragment(fragment: str, ordinal: int) -> Step:
    """Type a single instruction fragment with the rule table."""
    text = fragment.strip()
    for action_type, rule in RULES:
        fields = rule(text)
        if fields is not None:
            return Step(ordinal=ordinal, raw_text=text, action_type=action_type, **fields)
    return Step(ordinal=ordinal, raw_text=text, action_type=ActionType.UNKNOWN)


def classify(raw_instruction: str) -> list[Step]:
    """
    Extract the ordered step list from a numbered instruction.

    Returns an empty list when the text carries no numeric markers; callers
    treat that as "not decomposable".
    """
    return [
        classify_fragment(fragment, ordinal)
        for ordinal, fragment in enumerate(split_fragments(raw_instruction), start=1)
    ]
