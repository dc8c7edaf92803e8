from escrutinio.services.tally.aliases import AliasConfig, AliasResolver, normalize
from escrutinio.services.tally.commands import (
    DECREMENT,
    INCREMENT,
    SET_ABSOLUTE,
    UNDO_LAST,
    Command,
)
from escrutinio.services.tally.errors import ParseError


class CommandParser:
    """Turns one transcribed utterance into a :class:`Command`.

    ``parse`` raises :class:`ParseError` when nothing actionable was said; it
    never touches any tally.
    """

    def __init__(self, config=None, resolver=None):
        self.config = config or AliasConfig()
        self.resolver = resolver or AliasResolver(self.config)
        self._intent_words = (
            self.config.negative_prefixes
            | self.config.set_keywords
            | self.config.undo_keywords
        )

    def parse(self, utterance, active_office=None, roster=()):
        tokens = normalize(utterance).split()
        if not tokens:
            raise ParseError("unrecognized")

        office, tokens = self._take_office(tokens, active_office, roster)
        objected = any(token in self.config.objection_words for token in tokens)
        tokens = [token for token in tokens if token not in self.config.objection_words]
        if not tokens:
            raise ParseError("unrecognized")

        head, rest = tokens[0], tokens[1:]

        if head in self.config.undo_keywords and not rest:
            return Command(action=UNDO_LAST, office=office)

        if head in self.config.negative_prefixes:
            if " ".join(rest) in self.config.undo_phrases:
                return Command(action=UNDO_LAST, office=office)
            magnitude, rest = self._take_magnitude(rest)
            action = DECREMENT
        elif head in self.config.set_keywords and self._sets_absolute(head, rest):
            value = self.config.number(rest[0]) if rest else None
            if value is None or value < 0:
                raise ParseError("invalid-magnitude")
            magnitude, rest = value, rest[1:]
            action = SET_ABSOLUTE
        elif head in self.config.increment_keywords:
            magnitude, rest = self._take_magnitude(rest)
            action = INCREMENT
        else:
            magnitude, rest = 1, tokens
            action = INCREMENT

        # An intent word anywhere but the head leaves the intent unclear.
        if any(token in self._intent_words for token in rest):
            raise ParseError("unrecognized")

        office = self._require_office(office, roster)
        target_key = self._resolve(self._strip_fillers(rest), roster, office)
        return Command(
            action=action,
            target_key=target_key,
            magnitude=magnitude,
            office=office,
            objected=objected,
        )

    def _take_office(self, tokens, active_office, roster):
        office = self.config.office_for_word(tokens[0])
        if office is not None and len(tokens) > 1:
            return office, tokens[1:]
        return active_office, tokens

    def _require_office(self, office, roster):
        if office is not None:
            return office
        offices = _unique_offices(roster)
        if len(offices) == 1:
            return offices[0]
        if not offices:
            raise ParseError("unrecognized")
        raise ParseError("ambiguous")

    def _sets_absolute(self, head, rest):
        # "sumar" doubles as a plain increment unless an explicit count follows;
        # "un voto" / "1 voto" is still a single added vote.
        if head not in self.config.increment_keywords:
            return True
        if not rest or not self._strip_fillers(rest[1:]):
            return False
        value = self.config.number(rest[0])
        return value is not None and value != 1

    def _take_magnitude(self, tokens):
        if len(tokens) < 2:
            return 1, tokens
        value = self.config.number(tokens[0])
        if value is None or not self._strip_fillers(tokens[1:]):
            return 1, tokens
        if value < 1:
            raise ParseError("invalid-magnitude")
        return value, tokens[1:]

    def _strip_fillers(self, tokens):
        index = 0
        while index < len(tokens) and tokens[index] in self.config.filler_words:
            index += 1
        return tokens[index:]

    def _resolve(self, tokens, roster, office):
        phrase = " ".join(tokens)
        keys = self.resolver.matches(phrase, roster, office)
        if len(keys) > 1:
            raise ParseError("ambiguous")
        if not keys:
            raise ParseError("unrecognized")
        return keys[0]


def _unique_offices(roster):
    offices = []
    for entry in roster:
        if entry.office not in offices:
            offices.append(entry.office)
    return offices
