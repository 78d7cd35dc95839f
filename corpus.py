"""Name corpus loading.

The corpus is the ordered list of ``(card_id, card_name)`` pairs OCR text is
matched against. It normally lives in the card database; a JSON file works
for testing and for setups without the database.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Union

from config import CORPUS_TABLE
from exceptions import ConfigurationError
from recognize import CardName

logger = logging.getLogger(__name__)

SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


def load_corpus_from_sqlite(
    path: Union[str, Path],
    table: str = CORPUS_TABLE,
) -> list[CardName]:
    """Read ``(id, name)`` rows from the card table, ordered by name.

    Raises:
        ConfigurationError: If the database or table cannot be read.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Card database not found: {path}")
    if not table.isidentifier():
        raise ConfigurationError(f"Invalid table name '{table}'")

    conn = sqlite3.connect(str(path))
    try:
        rows = conn.execute(
            f"SELECT id, name FROM {table} ORDER BY name"
        ).fetchall()
    except sqlite3.Error as exc:
        raise ConfigurationError(f"Cannot read card names from {path}: {exc}") from exc
    finally:
        conn.close()

    corpus = [(str(card_id), str(name)) for card_id, name in rows]
    logger.info("Loaded %d card name(s) from %s", len(corpus), path)
    return corpus


def load_corpus_from_json(path: Union[str, Path]) -> list[CardName]:
    """Read a corpus from JSON.

    Accepted shapes: a list of ``{"id": ..., "name": ...}`` objects, a list
    of ``[id, name]`` pairs, or an ``{id: name}`` object (file order kept).

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"Corpus file not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Corpus file {path} is not valid JSON: {exc}") from exc

    if isinstance(data, dict):
        corpus = [(str(k), str(v)) for k, v in data.items()]
    elif isinstance(data, list):
        corpus = []
        for i, entry in enumerate(data):
            if isinstance(entry, dict) and "id" in entry and "name" in entry:
                corpus.append((str(entry["id"]), str(entry["name"])))
            elif isinstance(entry, (list, tuple)) and len(entry) == 2:
                corpus.append((str(entry[0]), str(entry[1])))
            else:
                raise ConfigurationError(
                    f"Corpus entry {i} in {path} is not an id/name pair: {entry!r}"
                )
    else:
        raise ConfigurationError(
            f"Corpus file {path} must hold a list or an object, "
            f"got {type(data).__name__}"
        )

    logger.info("Loaded %d card name(s) from %s", len(corpus), path)
    return corpus


def load_corpus(path: Union[str, Path]) -> list[CardName]:
    """Load a corpus from a SQLite database or JSON file, by suffix."""
    path = Path(path)
    if path.suffix.lower() in SQLITE_SUFFIXES:
        return load_corpus_from_sqlite(path)
    return load_corpus_from_json(path)
