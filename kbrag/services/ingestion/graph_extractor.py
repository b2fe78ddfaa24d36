"""Knowledge-graph extraction for articles.

Asks the organization's model for entities and relationships in one
JSON-mode completion, then persists them.  Entities without a name are
skipped; a relationship is kept only when both endpoint names exactly match
an entity persisted in the same run.
"""

from __future__ import annotations

from typing import Any

import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.model_provider import IModelProvider
from kbrag.models.rag import GraphEntity
from kbrag.providers.model.metadata import extract_json_object
from kbrag.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

GRAPH_PROMPT_TEMPLATE = """Extract key entities and their relationships from the following text to build a Knowledge Graph.
Return a valid JSON object with the following structure:
{{
  "entities": [
    {{ "name": "...", "type": "PERSON | ORGANIZATION | LOCATION | CONCEPT | EVENT", "description": "..." }}
  ],
  "relationships": [
    {{ "source_entity": "name of source entity", "target_entity": "name of target entity", "relationship": "WORKS_FOR | IS_LOCATED_IN | RELATED_TO | etc", "description": "..." }}
  ]
}}
Ensure entity names in relationships perfectly match the names in the entities array. Keep descriptions brief.

Text:
{text}"""


def _text_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _as_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class GraphExtractor:
    """Extracts and stores an article's entity/relationship graph.

    Parameters
    ----------
    store:
        Where entities and relationships are written.
    max_chars:
        Only the first *max_chars* characters of the text are sent.
    """

    def __init__(self, store: IArtifactStore, max_chars: int = 30000) -> None:
        self._store = store
        self._max_chars = max_chars

    async def extract(self, provider: IModelProvider, artifact_id: str, text: str) -> tuple[int, int]:
        """Run extraction for *artifact_id*; return ``(entities, relationships)`` persisted.

        Raises on provider errors or unparseable output.  The caller decides
        whether that is fatal.
        """
        response = await provider.generate_completion(
            GRAPH_PROMPT_TEMPLATE.format(text=text[: self._max_chars]),
            json_mode=True,
        )
        data = extract_json_object(response)
        if data is None:
            raise LLMError(
                message="Graph extraction returned no JSON object",
                provider_name=provider.provider_name,
            )

        entity_ids: dict[str, str] = {}
        for raw in _as_list(data.get("entities")):
            name = raw.get("name")
            if not name:
                continue
            entity = GraphEntity(
                name=str(name),
                type=str(raw.get("type") or "CONCEPT"),
                description=_text_or_none(raw.get("description")),
            )
            entity_ids[entity.name] = await self._store.insert_entity(artifact_id, entity)

        relationship_count = 0
        for raw in _as_list(data.get("relationships")):
            source_id = entity_ids.get(str(raw.get("source_entity", "")))
            target_id = entity_ids.get(str(raw.get("target_entity", "")))
            if not (source_id and target_id):
                continue
            await self._store.insert_relationship(
                artifact_id,
                source_id,
                target_id,
                str(raw.get("relationship") or "RELATED_TO"),
                _text_or_none(raw.get("description")),
            )
            relationship_count += 1

        logger.info(
            "graph_extracted",
            artifact_id=artifact_id,
            entities=len(entity_ids),
            relationships=relationship_count,
        )
        return len(entity_ids), relationship_count
