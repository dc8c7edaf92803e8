import json
import re
import unicodedata

from escrutinio.services.tally.commands import RESERVED_KEYS

_NON_WORD = re.compile(r"[^\w\s-]")
_INTEGER = re.compile(r"-?\d+")


def normalize(text):
    """Lowercase, fold accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = _NON_WORD.sub(" ", stripped.lower())
    return " ".join(stripped.split())


def _phrases(values):
    return {normalize(value) for value in values if normalize(value)}


class AliasConfig:
    """Keyword tables for the voice parser, keyed by office for candidate aliases."""

    def __init__(self, data=None):
        data = data or {}
        self.negative_prefixes = _phrases(data.get("negative_prefixes", []))
        self.undo_phrases = _phrases(data.get("undo_phrases", []))
        self.undo_keywords = _phrases(data.get("undo_keywords", []))
        self.set_keywords = _phrases(data.get("set_keywords", []))
        self.increment_keywords = _phrases(data.get("increment_keywords", []))
        self.filler_words = _phrases(data.get("filler_words", []))
        self.objection_words = _phrases(data.get("objection_words", []))
        self.reserved = {
            key: _phrases(data.get("reserved", {}).get(key, []))
            for key in RESERVED_KEYS
        }
        self.numbers = {
            normalize(word): int(value)
            for word, value in data.get("numbers", {}).items()
        }

        self.office_names = {}
        self.office_aliases = {}
        for office, entry in data.get("offices", {}).items():
            self.office_names[office] = _phrases([office, *entry.get("names", [])])
            self.office_aliases[office] = {
                normalize(alias): key for alias, key in entry.get("aliases", {}).items()
            }

    def number(self, token):
        if _INTEGER.fullmatch(token or ""):
            return int(token)
        return self.numbers.get(token)

    def office_for_word(self, word):
        for office, names in self.office_names.items():
            if word in names:
                return office
        return None

    def aliases_for(self, office=None):
        if office is not None:
            return list(self.office_aliases.get(office, {}).items())
        return [
            item for aliases in self.office_aliases.values() for item in aliases.items()
        ]


def load_alias_config(path):
    with open(path, encoding="utf-8") as handle:
        return AliasConfig(json.load(handle))


def _unique(keys):
    seen = []
    for key in keys:
        if key not in seen:
            seen.append(key)
    return seen


class AliasResolver:
    """Maps a spoken phrase to a candidate key, ``"blank"`` or ``"null"``.

    Tiers are tried in order and the first one producing any match wins:
    full display name, surname, ballot number, reserved word, configured
    office alias, then keyword containment inside a longer phrase. A tier
    that matches several candidates is ambiguous and never picks one.
    """

    def __init__(self, config=None):
        self.config = config or AliasConfig()

    def resolve(self, phrase, roster, office=None):
        keys = self.matches(phrase, roster, office)
        if len(keys) == 1:
            return keys[0]
        return None

    def matches(self, phrase, roster, office=None):
        text = normalize(phrase)
        if not text:
            return []

        candidates = [
            entry for entry in roster if office is None or entry.office == office
        ]
        tiers = (
            self._by_full_name,
            self._by_surname,
            self._by_ballot_number,
            self._by_reserved_word,
            self._by_office_alias,
            self._by_keyword,
        )
        for tier in tiers:
            keys = _unique(tier(text, candidates, office))
            if keys:
                return keys
        return []

    def _by_full_name(self, text, candidates, office):
        return [entry.key for entry in candidates if normalize(entry.display_name) == text]

    def _by_surname(self, text, candidates, office):
        keys = []
        for entry in candidates:
            tokens = normalize(entry.display_name).split()
            if len(tokens) >= 2 and tokens[-1] == text:
                keys.append(entry.key)
        return keys

    def _by_ballot_number(self, text, candidates, office):
        number = self.config.number(text)
        if number is None:
            return []
        keys = []
        for entry in candidates:
            ballot = str(entry.ballot_number or "").strip()
            if ballot.isdigit() and int(ballot) == number:
                keys.append(entry.key)
        return keys

    def _by_reserved_word(self, text, candidates, office):
        return [
            key
            for key, synonyms in self.config.reserved.items()
            if text == key or text in synonyms
        ]

    def _by_office_alias(self, text, candidates, office):
        known = {entry.key for entry in candidates} | set(RESERVED_KEYS)
        return [
            key
            for alias, key in self.config.aliases_for(office)
            if alias == text and key in known
        ]

    def _by_keyword(self, text, candidates, office):
        padded = f" {text} "
        tokens = set(text.split())

        full_names = [
            entry.key
            for entry in candidates
            if f" {normalize(entry.display_name)} " in padded
        ]
        if full_names:
            return full_names

        keys = []
        for entry in candidates:
            name_tokens = normalize(entry.display_name).split()
            if len(name_tokens) >= 2 and name_tokens[-1] in tokens:
                keys.append(entry.key)
        for key, synonyms in self.config.reserved.items():
            if any(f" {synonym} " in padded for synonym in synonyms):
                keys.append(key)
        return keys
