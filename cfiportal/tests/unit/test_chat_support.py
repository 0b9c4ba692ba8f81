from __future__ import annotations

import pytest

from cfiportal.core.errors import ChatContextError
from cfiportal.persistence.repos.chat import TITLE_MAX_CHARS, title_from_question
from cfiportal.services.agents.chat import CHAT_REGISTRY
from cfiportal.services.agents.common import extract_json, quality_score


def test_registry_exposes_known_contexts() -> None:
    assert CHAT_REGISTRY.contexts() == ["commandes", "factures", "general", "stocks"]
    assert CHAT_REGISTRY.get("stocks").label == "stock levels"


def test_registry_rejects_unknown_context() -> None:
    with pytest.raises(ChatContextError):
        CHAT_REGISTRY.get("meteo")


def test_long_question_title_is_truncated_with_ellipsis() -> None:
    question = "x" * 51

    title = title_from_question(question)

    assert len(title) == TITLE_MAX_CHARS
    assert title == "x" * 47 + "..."


def test_short_question_title_is_kept() -> None:
    assert title_from_question("  Mes   factures ? ") == "Mes factures ?"
    assert title_from_question("y" * 50) == "y" * 50


def test_extract_json_skips_prose_and_fences() -> None:
    text = 'Voici le resultat:\n```json\n{"name": "Claire", "age": 38}\n```'

    assert extract_json(text) == {"name": "Claire", "age": 38}
    assert extract_json("no json here") is None


def test_quality_score_counts_filled_fields() -> None:
    assert quality_score({"a": 1, "b": "", "c": [], "d": "x"}, ["a", "b", "c", "d"]) == 50
    assert quality_score({}, []) == 100
