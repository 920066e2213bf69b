from __future__ import annotations

import os
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from datetime import datetime

from dateutil import parser as dateparser


# ------------------------------
# Data structure
# ------------------------------
@dataclass(frozen=True)
class Message:
    id: str
    text: str
    author_id: Optional[str] = None
    created_at: Optional[datetime] = None


# ------------------------------
# IO helpers
# ------------------------------
def load_jsonl(path: str) -> List[Dict[str, Any]]:
    data: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s:
                continue
            try:
                data.append(json.loads(s))
            except json.JSONDecodeError:
                # skip malformed line
                pass
    return data


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        # epoch millis when it is too large to be seconds
        seconds = raw / 1000.0 if raw > 1e11 else float(raw)
        try:
            return datetime.fromtimestamp(seconds)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        return dateparser.parse(str(raw))  # tz-aware ok
    except (ValueError, OverflowError):
        return None


def read_messages(input_path: str) -> List[Message]:
    items: List[Dict[str, Any]] = []
    if os.path.isdir(input_path):
        for fn in sorted(os.listdir(input_path)):
            if fn.lower().endswith(".jsonl"):
                items.extend(load_jsonl(os.path.join(input_path, fn)))
    else:
        items = load_jsonl(input_path)

    messages: List[Message] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        author = it.get("author_id", it.get("authorId", it.get("user_id", it.get("user"))))
        messages.append(
            Message(
                id=str(it.get("id", "")),
                text=str(it.get("text") or ""),
                author_id=str(author) if author is not None else None,
                created_at=_parse_timestamp(it.get("created_at", it.get("createdAt", it.get("timestamp")))),
            )
        )
    return messages


# ------------------------------
# Tokenizer
# ------------------------------
STOPWORDS = frozenset(
    """
the a an and or but in on at to for of with by from is are was were be been
being have has had do does did will would could should may might must can
this that these those i you he she it we they what which who when where why
how all each every both few more most other some such no nor not only own
same so than too very as just if into through during before after above
below up down out off over under again further then once here there about
me my him her his them their
""".split()
)

_NON_WORD_RE = re.compile(r"[^\w\s]")
_MIN_TOKEN_LEN = 3


def tokenize(text: str) -> List[str]:
    """Lower-case, strip punctuation and drop short tokens and stopwords."""
    if not text:
        return []
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) >= _MIN_TOKEN_LEN and t not in STOPWORDS]


def tokenize_messages(messages: Iterable[Message]) -> Tuple[Dict[str, List[str]], List[List[str]]]:
    """Tokenize every message once.

    Returns the term -> message ids index and the token list of each message.
    Terms keep first-discovery order and every message id is listed at most
    once per term, in message order.
    """
    term_to_ids: Dict[str, List[str]] = {}
    seen: Dict[str, Set[str]] = {}
    documents: List[List[str]] = []
    for m in messages:
        tokens = tokenize(m.text)
        documents.append(tokens)
        for token in tokens:
            ids = term_to_ids.setdefault(token, [])
            id_set = seen.setdefault(token, set())
            if m.id not in id_set:
                id_set.add(m.id)
                ids.append(m.id)
    return term_to_ids, documents


def index_terms(messages: Iterable[Message]) -> Dict[str, List[str]]:
    """Map each term to the ids of the messages containing it."""
    return tokenize_messages(messages)[0]
