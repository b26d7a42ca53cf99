"""
Option matching for chat routing.

Pure pattern-based functions that decide whether a chat input selects
from an option set and, if so, which option:

- Verb and politeness stripping ("can you open the links panel pls")
- Single-letter badge extraction ("... panel d")
- Token-set label matching with a scored ordering for re-shows
- Ordinal parsing ("second", "the second one", "option 2", "secone")
- Command-likeness and question intent

Every function is total: empty or unmatched input yields ``None`` or an
empty result, and no function reads mutable state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .config import MatcherConfig
from .types import Option

_DEFAULT_MATCHER = MatcherConfig()

# Leading filler stripped before verbs, longest first
POLITE_PREFIXES: tuple[str, ...] = (
    "i would like to",
    "i'd like to",
    "i want to",
    "could you please",
    "can you please",
    "would you please",
    "will you please",
    "could you",
    "can you",
    "would you",
    "will you",
    "can u",
    "could u",
    "please",
    "kindly",
    "okay",
    "let's",
    "lets",
    "hey",
    "pls",
    "plz",
    "hi",
    "ok",
    "so",
    "um",
)

ARTICLES = ("the", "a", "an", "my")

_TRAILING_PUNCT = re.compile(r"[?!.,;:]+$")
_WHITESPACE = re.compile(r"\s+")
_TRAILING_FILLER = re.compile(
    r"(?:\s+(?:pl+[sz]+|ple+a*s+e*|plz+|thanks|thank you|thx|now|for me|asap))+$"
)
_TOKEN = re.compile(r"[a-z0-9]+")
_REPEATED_LETTER = re.compile(r"([a-z])\1+")

QUESTION_INTENT = re.compile(
    r"^(what|what's|whats|how|where|when|why|who|which|can|could|would|should|"
    r"tell|explain|help|is|are|do|does)\b"
)
ACTION_VERB = re.compile(
    r"\b(open|close|show|list|go|create|rename|delete|remove|add|navigate|"
    r"edit|modify|change|update|view|launch)\b"
)
EXPLICIT_COMMAND_VERB = re.compile(
    r"\b(open|show|list|view|go|back|home|create|rename|delete|remove)\b"
)
POLITE_COMMAND_PREFIX = re.compile(r"^(can you|could you|would you|will you|please|pls)\b")
DOC_INSTRUCTION_CUE = re.compile(
    r"\b(how to|how do i|how can i|tell me how|show me how|walk me through)\b"
)
INDEX_REFERENCE = re.compile(r"\b(workspace|note|panel|entry|item|option)\s+(\d+|[a-e])$")
SELECTION_SHAPE = re.compile(
    r"^(?:(?:the|that|this)\s+)?(?:[a-z0-9]+\s+)?(?:one|option|choice|item)$"
)
SEMANTIC_LANE = re.compile(
    r"\b(why did|explain|what (just )?happened|what was that|summarize|recap|"
    r"what have i been doing|what did we do|my (recent )?activity|my session)\b"
)
REPAIR_PHRASE = re.compile(
    r"^(?:no,?\s+)?(?:not that one|not this one|the other one|other one|"
    r"wrong one|the other|not that)$"
)

EXIT_PHRASES: tuple[str, ...] = (
    "none of these",
    "never mind",
    "nevermind",
    "forget it",
    "start over",
    "something else",
    "no thanks",
    "cancel",
    "stop",
    "skip",
    "exit",
    "quit",
    "none",
)
_EXIT_TAIL = r"(?:\s+(?:please|pls|thanks|it|that|this|now|those))*"

ORDINAL_WORDS: dict[str, int] = {
    "first": 0,
    "second": 1,
    "third": 2,
    "fourth": 3,
    "fifth": 4,
    "1st": 0,
    "2nd": 1,
    "3rd": 2,
    "4th": 3,
    "5th": 4,
    # Common typos
    "frist": 0,
    "fisrt": 0,
    "frst": 0,
    "sedond": 1,
    "secnd": 1,
    "scond": 1,
    "secon": 1,
    "thrid": 2,
    "thrd": 2,
    "forth": 3,
    "fouth": 3,
    "fith": 4,
}
NUMBER_WORDS: dict[str, int] = {"one": 0, "two": 1, "three": 2, "four": 3, "five": 4}
FUZZY_ORDINAL_TARGETS = ("first", "second", "third", "fourth", "fifth")
# Number words one edit away from an ordinal ("fifty" vs "fifth")
ORDINAL_LOOKALIKES = frozenset(
    {"fifty", "fifteen", "thirty", "thirteen", "forty", "fourty", "fourteen", "sixty", "twenty"}
)

_NUMBERED = re.compile(r"^(?:(?:option|number|choice|item|no)\s*|#)?(\d{1,2})$")
_NUMBER_WORDED = re.compile(r"^(?:option|number|choice|item)\s+(one|two|three|four|five)$")
_JOINED_ORDINAL = re.compile(r"\b(first|second|third|fourth|fifth|last)(option|one|choice)\b")
_POSITIONAL = re.compile(r"^(top|bottom|last)(?:\s+(?:one|option|choice))?$")

# Ordinal words are only scanned for inside short phrases
MAX_ORDINAL_PHRASE_TOKENS = 6


@dataclass
class OptionMatch:
    """
    Result of matching an input against an option set.

    ``exact`` holds token-set-equal options (the only ones eligible for a
    deterministic selection). ``ranked`` orders partially matching options
    for a re-show and never drives a selection on its own.
    """

    exact: list[Option] = field(default_factory=list)
    ranked: list[Option] = field(default_factory=list)

    @property
    def unique_exact(self) -> Option | None:
        return self.exact[0] if len(self.exact) == 1 else None


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def normalize_input(text: str) -> str:
    """Lowercase, collapse whitespace, drop trailing punctuation."""
    if not text:
        return ""
    normalized = _WHITESPACE.sub(" ", text.lower()).strip()
    return _TRAILING_PUNCT.sub("", normalized).strip()


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall(text.lower())


def normalize_token(token: str) -> str:
    """Collapse repeated letters and a plural ``s`` ("linkk" -> "link", "panels" -> "panel")."""
    token = _REPEATED_LETTER.sub(r"\1", token)
    if len(token) > 3 and token.endswith("s"):
        token = token[:-1]
    return token


def tokens_match(a: str, b: str) -> bool:
    """Equal tokens, or one edit apart when both are long enough to be words."""
    if a == b:
        return True
    if min(len(a), len(b)) < 4 or a.isdigit() or b.isdigit():
        return False
    return levenshtein(a, b) <= 1


def label_tokens(label: str) -> list[str]:
    return [normalize_token(t) for t in tokenize(label)]


def _strip_prefixes(text: str, prefixes: tuple[str, ...]) -> tuple[str, bool]:
    for prefix in prefixes:
        if text == prefix:
            return "", True
        if text.startswith(prefix + " "):
            return text[len(prefix) + 1 :].lstrip(), True
    return text, False


def strip_politeness(text: str) -> str:
    """Remove leading filler ("hey", "can you", "please") and trailing filler ("pls", "now")."""
    canonical = normalize_input(text)
    changed = True
    while changed and canonical:
        canonical, changed = _strip_prefixes(canonical, POLITE_PREFIXES)
    return _TRAILING_FILLER.sub("", canonical).strip()


def strip_verbs_and_politeness(text: str, config: MatcherConfig | None = None) -> str:
    """
    Reduce a command to its noun phrase.

    Removes leading filler, one command verb from the configured closed
    set (or a typo on the correction allow-list), a leading article, and
    trailing filler. A leading word outside the verb set is kept as-is.

    Examples:
        "can you open the links panel pls" -> "links panel"
        "opwn links panel d" -> "links panel d"
        "ope panel d" -> "ope panel d"
    """
    config = config or _DEFAULT_MATCHER
    canonical = strip_politeness(text)
    if not canonical:
        return ""

    verbs = sorted(
        [*config.command_verbs, *config.verb_corrections.keys()], key=len, reverse=True
    )
    canonical, stripped = _strip_prefixes(canonical, tuple(verbs))
    if stripped:
        canonical = strip_politeness(canonical)

    parts = canonical.split(" ", 1)
    if len(parts) == 2 and parts[0] in ARTICLES:
        canonical = parts[1]
    return canonical.strip()


def extract_badge(text: str) -> str | None:
    """Return the trailing token when it is a single letter ("links panel d" -> "d")."""
    tokens = tokenize(normalize_input(text))
    if not tokens:
        return None
    last = tokens[-1]
    if len(last) == 1 and last.isalpha():
        return last
    return None


def match_badge(badge: str | None, options: list[Option]) -> list[Option]:
    """Options whose label ends with the given badge letter."""
    if not badge:
        return []
    matches = []
    for option in options:
        tokens = tokenize(option.label)
        if tokens and tokens[-1] == badge.lower():
            matches.append(option)
    return matches


def _covers(needles: list[str], haystack: list[str]) -> bool:
    return all(any(tokens_match(n, h) for h in haystack) for n in needles)


def token_sets_equal(a: list[str], b: list[str]) -> bool:
    return bool(a) and bool(b) and _covers(a, b) and _covers(b, a)


def find_matching_options(canonical_input: str, options: list[Option]) -> OptionMatch:
    """
    Match a canonical input against option labels.

    Only token-set equality counts as an exact match. Partial overlap,
    prefix and substring hits are scored into ``ranked`` for re-show order.
    """
    canonical = normalize_input(canonical_input)
    input_tokens = [normalize_token(t) for t in tokenize(canonical)]
    if not input_tokens or not options:
        return OptionMatch()

    exact: list[Option] = []
    scored: list[tuple[float, int, Option]] = []

    for position, option in enumerate(options):
        tokens = label_tokens(option.label)
        if token_sets_equal(input_tokens, tokens):
            exact.append(option)
            scored.append((2.0, position, option))
            continue

        overlap = sum(1 for t in input_tokens if any(tokens_match(t, lt) for lt in tokens))
        score = overlap / len(input_tokens)
        label = option.label.lower()
        if label.startswith(canonical):
            score += 0.5
        elif canonical in label:
            score += 0.25
        if score > 0:
            scored.append((score, position, option))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return OptionMatch(exact=exact, ranked=[option for _, _, option in scored])


def _ordinal_index(token: str, max_distance: int, label_words: frozenset[str]) -> int | None:
    if token in ORDINAL_WORDS:
        return ORDINAL_WORDS[token]
    if len(token) < 5 or token in ORDINAL_LOOKALIKES or token in label_words:
        return None
    token = _REPEATED_LETTER.sub(r"\1", token)
    if token in ORDINAL_WORDS:
        return ORDINAL_WORDS[token]
    limit = min(max_distance, 1 if len(token) <= 5 else 2)
    best: tuple[int, int] | None = None
    for target in FUZZY_ORDINAL_TARGETS:
        distance = levenshtein(token, target)
        if distance <= limit and (best is None or distance < best[0]):
            best = (distance, ORDINAL_WORDS[target])
    return best[1] if best else None


def parse_ordinal(
    text: str,
    option_count: int | None = None,
    config: MatcherConfig | None = None,
    labels: list[str] | None = None,
) -> int | None:
    """
    Parse an ordinal reference into a zero-based option index.

    Recognizes "second", "the second one", "2nd", "option 2", "2", "number
    two", "top"/"bottom"/"last", a lone letter "a".."e", and typos of the
    ordinal word ("secone", "thrid") regardless of the verb in front of it.
    Words that appear in ``labels`` are never fuzzed into ordinals.
    Returns ``None`` when nothing matches or the index is out of bounds.
    """
    config = config or _DEFAULT_MATCHER
    canonical = strip_verbs_and_politeness(text, config)
    if not canonical:
        return None
    canonical = _JOINED_ORDINAL.sub(r"\1 \2", canonical)

    index: int | None = None

    if match := _NUMBERED.match(canonical):
        index = int(match.group(1)) - 1
    elif match := _NUMBER_WORDED.match(canonical):
        index = NUMBER_WORDS[match.group(1)]
    elif canonical in NUMBER_WORDS:
        index = NUMBER_WORDS[canonical]
    elif match := _POSITIONAL.match(canonical):
        if match.group(1) == "top":
            index = 0
        elif option_count:
            index = option_count - 1
    elif len(canonical) == 1 and canonical in "abcde":
        index = ord(canonical) - ord("a")
    else:
        label_words = frozenset(t for label in labels or [] for t in tokenize(label))
        tokens = tokenize(canonical)
        if len(tokens) <= MAX_ORDINAL_PHRASE_TOKENS and not QUESTION_INTENT.match(canonical):
            for token in tokens:
                if token == "last" and option_count:
                    index = option_count - 1
                    break
                found = _ordinal_index(token, config.ordinal_max_distance, label_words)
                if found is not None:
                    index = found
                    break

    if index is None or index < 0:
        return None
    if option_count is not None and index >= option_count:
        return None
    return index


def has_question_intent(text: str) -> bool:
    """Starts with a question word or ends with ``?``."""
    if not text or not text.strip():
        return False
    if text.strip().endswith("?"):
        return True
    return bool(QUESTION_INTENT.match(normalize_input(text)))


def is_command_like(text: str, config: MatcherConfig | None = None) -> bool:
    """
    True for imperative phrasing, even with a trailing ``?``.

    "open that summary144 now plssss?" is command-like; "what is
    summary144?" and "where is panel d located" are not. Question intent is
    judged after trailing punctuation is removed, and polite imperatives
    ("can you open panel d") count as commands unless they ask for
    instructions ("can you show me how to add a widget").
    """
    config = config or _DEFAULT_MATCHER
    normalized = normalize_input(text)
    if not normalized:
        return False

    if INDEX_REFERENCE.search(normalized) and not QUESTION_INTENT.match(normalized):
        return True

    canonical = strip_politeness(normalized)
    first_word = canonical.split(" ", 1)[0] if canonical else ""
    starts_with_verb = bool(ACTION_VERB.match(canonical)) or first_word in config.verb_corrections

    if starts_with_verb and not QUESTION_INTENT.match(normalized):
        return True

    if POLITE_COMMAND_PREFIX.match(normalized) and (starts_with_verb or ACTION_VERB.search(normalized)):
        return not DOC_INSTRUCTION_CUE.search(normalized)

    return False


def is_explicit_command(text: str, config: MatcherConfig | None = None) -> bool:
    """Contains a navigation/command verb and no ordinal reference."""
    if parse_ordinal(text, config=config) is not None:
        return False
    return bool(EXPLICIT_COMMAND_VERB.search(normalize_input(text)))


def is_selection_shaped(text: str) -> bool:
    """Phrases like "that one", "the summary one", "this option"."""
    return bool(SELECTION_SHAPE.match(strip_politeness(text)))


def is_exit_phrase(text: str) -> bool:
    """Short cancel/stop phrases ("cancel", "never mind", "none of these")."""
    canonical = strip_politeness(text)
    if not canonical:
        return False
    return any(re.fullmatch(rf"{re.escape(p)}{_EXIT_TAIL}", canonical) for p in EXIT_PHRASES)


def is_repair_phrase(text: str) -> bool:
    """Corrections of the previous pick ("not that one", "the other one")."""
    return bool(REPAIR_PHRASE.match(normalize_input(text)))


def is_semantic_question(text: str, config: MatcherConfig | None = None) -> bool:
    """
    Self-referential meta-questions ("explain what just happened").

    Explicit commands ("open links panel and explain why") and strict
    ordinal selections are excluded.
    """
    normalized = normalize_input(text)
    if not normalized or not SEMANTIC_LANE.search(normalized):
        return False
    if is_explicit_command(text, config):
        return False
    return parse_ordinal(text, config=config) is None


__all__ = [
    "OptionMatch",
    "extract_badge",
    "find_matching_options",
    "has_question_intent",
    "is_command_like",
    "is_exit_phrase",
    "is_explicit_command",
    "is_repair_phrase",
    "is_selection_shaped",
    "is_semantic_question",
    "label_tokens",
    "levenshtein",
    "match_badge",
    "normalize_input",
    "normalize_token",
    "parse_ordinal",
    "strip_politeness",
    "strip_verbs_and_politeness",
    "token_sets_equal",
    "tokenize",
]
