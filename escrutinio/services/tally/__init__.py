from flask import current_app

from escrutinio.services.tally.aggregation import AggregationEngine, consolidate, tables_in_scope
from escrutinio.services.tally.aliases import AliasConfig, AliasResolver, load_alias_config
from escrutinio.services.tally.commands import Command, UndoEntry
from escrutinio.services.tally.errors import (
    ApplyError,
    ParseError,
    PersistenceError,
    SourceUnavailable,
    StreamFault,
    TallyError,
)
from escrutinio.services.tally.parser import CommandParser
from escrutinio.services.tally.repository import TallyRepository
from escrutinio.services.tally.roster import AssignmentLookup, RosterEntry, RosterProvider
from escrutinio.services.tally.session import ListeningSession, SegmentSource, SessionRegistry
from escrutinio.services.tally.store import TallyStore, UndoStack


def init_tally(app):
    aliases = load_alias_config(app.config["TALLY_ALIASES_PATH"])
    app.logger.info("Loaded voice aliases from %s", app.config["TALLY_ALIASES_PATH"])
    app.extensions["tally"] = {
        "aliases": aliases,
        "parser": CommandParser(aliases),
        "repository": TallyRepository(),
        "roster": RosterProvider(),
        "assignments": AssignmentLookup(),
        "sessions": SessionRegistry(),
    }


def tally_services():
    return current_app.extensions["tally"]


__all__ = [
    "AggregationEngine",
    "AliasConfig",
    "AliasResolver",
    "ApplyError",
    "AssignmentLookup",
    "Command",
    "CommandParser",
    "ListeningSession",
    "ParseError",
    "PersistenceError",
    "RosterEntry",
    "RosterProvider",
    "SegmentSource",
    "SessionRegistry",
    "SourceUnavailable",
    "StreamFault",
    "TallyError",
    "TallyRepository",
    "TallyStore",
    "UndoEntry",
    "UndoStack",
    "consolidate",
    "init_tally",
    "load_alias_config",
    "tables_in_scope",
    "tally_services",
]
