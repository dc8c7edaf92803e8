import json

import pytest

from escrutinio.config import Config
from escrutinio.services.tally import AliasConfig, AliasResolver, RosterEntry, load_alias_config
from escrutinio.services.tally.aliases import normalize

ROSTER = [
    RosterEntry("PRE-1", "Juanito Arcoiris", "1", "president"),
    RosterEntry("PRE-2", "Juan Pérez", "2", "president"),
    RosterEntry("PRE-3", "Maria Gonzalez", "3", "president"),
    RosterEntry("PRE-4", "Pedro Perez", "4", "president"),
    RosterEntry("DIP-1", "Rosa Cascote", "1", "deputy"),
    RosterEntry("DIP-2", "Luis Manoslimpias", "2", "deputy"),
]


@pytest.fixture()
def resolver():
    with open(Config.TALLY_ALIASES_PATH, encoding="utf-8") as handle:
        data = json.load(handle)
    data["offices"]["president"]["aliases"] = {"fenomeno": "PRE-1", "el fenomeno": "PRE-1"}
    return AliasResolver(AliasConfig(data))


def test_normalize_folds_accents_case_and_spacing():
    assert normalize("  Juan   PÉREZ, ") == "juan perez"
    assert normalize("") == ""
    assert normalize(None) == ""


def test_full_display_name_wins(resolver):
    assert resolver.resolve("Juanito Arcoiris", ROSTER) == "PRE-1"
    assert resolver.resolve("juan perez", ROSTER) == "PRE-2"


def test_unique_surname_resolves(resolver):
    assert resolver.resolve("arcoiris", ROSTER) == "PRE-1"
    assert resolver.resolve("gonzalez", ROSTER, office="president") == "PRE-3"


def test_shared_surname_fails_closed(resolver):
    assert resolver.resolve("perez", ROSTER) is None
    assert resolver.matches("perez", ROSTER) == ["PRE-2", "PRE-4"]


def test_ballot_number_as_digits_or_word(resolver):
    assert resolver.resolve("3", ROSTER) == "PRE-3"
    assert resolver.resolve("tres", ROSTER) == "PRE-3"


def test_ballot_number_is_scoped_by_office(resolver):
    assert resolver.resolve("1", ROSTER) is None
    assert resolver.resolve("1", ROSTER, office="deputy") == "DIP-1"
    assert resolver.resolve("uno", ROSTER, office="president") == "PRE-1"


def test_reserved_words(resolver):
    assert resolver.resolve("blanco", ROSTER) == "blank"
    assert resolver.resolve("voto en blanco", ROSTER) == "blank"
    assert resolver.resolve("voto nulo", ROSTER) == "null"
    assert resolver.resolve("anulado", ROSTER) == "null"


def test_configured_office_alias(resolver):
    assert resolver.resolve("fenomeno", ROSTER, office="president") == "PRE-1"
    assert resolver.resolve("fenomeno", ROSTER, office="deputy") is None


def test_name_inside_noisy_phrase(resolver):
    assert resolver.resolve("un voto para juanito arcoiris por favor", ROSTER) == "PRE-1"
    assert resolver.resolve("ese es para gonzalez", ROSTER, office="president") == "PRE-3"


def test_two_surnames_in_one_phrase_are_ambiguous(resolver):
    assert resolver.resolve("arcoiris gonzalez", ROSTER) is None
    assert resolver.matches("arcoiris gonzalez", ROSTER) == ["PRE-1", "PRE-3"]


def test_no_match(resolver):
    assert resolver.resolve("fulano de tal", ROSTER) is None
    assert resolver.resolve("", ROSTER) is None


def test_packaged_config_loads():
    config = load_alias_config(Config.TALLY_ALIASES_PATH)
    assert "restar" in config.negative_prefixes
    assert config.number("cincuenta") == 50
    assert config.number("12") == 12
    assert config.office_for_word("diputado") == "deputy"
