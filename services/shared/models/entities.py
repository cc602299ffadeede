"""
Typed views over entity property bags.

Graph nodes carry free-form properties. Each entity type family gets a
dataclass holding only the fields it defines, so prompt building, excerpts
and embedding text read typed attributes instead of string keys.
"""

from dataclasses import dataclass
from typing import Any, Union

from services.shared.models.graph import EntityType

EXCERPT_MAX_LENGTH = 200
NO_DESCRIPTION = "No description available"


def _text(properties: dict[str, Any], key: str) -> str | None:
    """Return a stripped string property, or None when missing or blank."""
    value = properties.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class DrugFacts:
    """Fields defined for Drug nodes."""

    name: str | None = None
    indication: str | None = None
    mechanism_of_action: str | None = None
    description: str | None = None
    pharmacodynamics: str | None = None

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> "DrugFacts":
        return cls(
            name=_text(properties, "name"),
            indication=_text(properties, "indication"),
            mechanism_of_action=_text(properties, "mechanism_of_action"),
            description=_text(properties, "description"),
            pharmacodynamics=_text(properties, "pharmacodynamics"),
        )


@dataclass(frozen=True)
class DiseaseFacts:
    """Fields defined for Disease and ClinicalDisease nodes."""

    name: str | None = None
    mondo_definition: str | None = None
    description: str | None = None
    mayo_symptoms: str | None = None
    orphanet_clinical_description: str | None = None
    mayo_causes: str | None = None

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> "DiseaseFacts":
        return cls(
            name=_text(properties, "name"),
            mondo_definition=_text(properties, "mondo_definition"),
            description=_text(properties, "description"),
            mayo_symptoms=_text(properties, "mayo_symptoms"),
            orphanet_clinical_description=_text(properties, "orphanet_clinical_description"),
            mayo_causes=_text(properties, "mayo_causes"),
        )

    @property
    def definition(self) -> str | None:
        return self.mondo_definition or self.description


@dataclass(frozen=True)
class ProteinFacts:
    """Fields defined for Protein nodes."""

    name: str | None = None
    synonyms: tuple[str, ...] = ()

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> "ProteinFacts":
        raw = properties.get("synonyms") or []
        if isinstance(raw, str):
            raw = [raw]
        synonyms = tuple(s.strip() for s in (str(r) for r in raw) if s.strip())
        return cls(name=_text(properties, "name"), synonyms=synonyms)


EntityFacts = Union[DrugFacts, DiseaseFacts, ProteinFacts]


def entity_facts(entity_type: EntityType, properties: dict[str, Any]) -> EntityFacts:
    """Build the typed view for an entity type."""
    if entity_type == EntityType.DRUG:
        return DrugFacts.from_properties(properties)
    if entity_type in (EntityType.DISEASE, EntityType.CLINICAL_DISEASE):
        return DiseaseFacts.from_properties(properties)
    if entity_type == EntityType.PROTEIN:
        return ProteinFacts.from_properties(properties)
    raise ValueError(f"Unknown entity type: {entity_type}")


def describe_entity(facts: EntityFacts) -> list[tuple[str, str]]:
    """Labelled key facts used in the prompt context block."""
    lines: list[tuple[str, str]] = []

    if isinstance(facts, DrugFacts):
        if facts.indication:
            lines.append(("Indication", facts.indication))
        if facts.mechanism_of_action:
            lines.append(("Mechanism", facts.mechanism_of_action))
        if facts.description:
            lines.append(("Description", facts.description))
    elif isinstance(facts, DiseaseFacts):
        if facts.definition:
            lines.append(("Definition", facts.definition))
        if facts.mayo_symptoms:
            lines.append(("Symptoms", facts.mayo_symptoms))
    elif isinstance(facts, ProteinFacts):
        if facts.synonyms:
            lines.append(("Synonyms", ", ".join(facts.synonyms)))

    return lines


def build_excerpt(facts: EntityFacts, max_length: int = EXCERPT_MAX_LENGTH) -> str:
    """Short citation excerpt, truncated with an ellipsis."""
    parts: list[str] = []

    if isinstance(facts, DrugFacts):
        parts = [p for p in (facts.indication, facts.mechanism_of_action) if p]
    elif isinstance(facts, DiseaseFacts):
        if facts.definition:
            parts = [facts.definition]
    elif isinstance(facts, ProteinFacts):
        if facts.synonyms:
            parts = [f"Also known as: {', '.join(facts.synonyms[:3])}"]

    excerpt = ". ".join(parts)
    if len(excerpt) > max_length:
        return excerpt[: max_length - 3] + "..."

    return excerpt or NO_DESCRIPTION


def compose_embedding_text(facts: EntityFacts) -> str:
    """Composite text embedded for an entity's vector index entry."""
    if isinstance(facts, DrugFacts):
        parts = [
            f"Drug: {facts.name or 'Unknown'}",
            f"Indication: {facts.indication or 'N/A'}",
            f"Mechanism: {facts.mechanism_of_action or 'N/A'}",
            f"Description: {facts.description or 'N/A'}",
            f"Pharmacodynamics: {facts.pharmacodynamics or 'N/A'}",
        ]
    elif isinstance(facts, DiseaseFacts):
        parts = [
            f"Disease: {facts.name or 'Unknown'}",
            f"Definition: {facts.definition or 'N/A'}",
            f"Symptoms: {facts.mayo_symptoms or 'N/A'}",
            f"Clinical: {facts.orphanet_clinical_description or 'N/A'}",
            f"Causes: {facts.mayo_causes or 'N/A'}",
        ]
    else:
        synonyms = ", ".join(facts.synonyms) if facts.synonyms else "N/A"
        parts = [
            f"Protein: {facts.name or 'Unknown'}",
            f"Synonyms: {synonyms}",
        ]

    return "\n".join(parts).strip()
