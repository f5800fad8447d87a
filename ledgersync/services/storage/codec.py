"""
Document Codec

The boundary between raw store documents and typed entities.

DESIGN DECISION: Documents coming back from a store (a list call or a live
snapshot) are decoded here and nowhere else. A document that does not match
its entity schema fails decoding with a ValidationError instead of flowing
into aggregation as half-typed data.
"""

from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from ledgersync.models.ledger import ENTITY_MODELS, EntityKind, LedgerEntity, ValidationIssue
from ledgersync.services.storage.interface import Document
from ledgersync.validation.validator import ValidationError, issues_from_pydantic


def encode_entity(entity: LedgerEntity) -> Document:
    """Entity to a JSON-safe document in the camelCase stored shape."""
    return entity.model_dump(mode="json", by_alias=True)


def decode_document(
    kind: EntityKind,
    document: Document,
    owner_id: Optional[str] = None,
) -> LedgerEntity:
    """
    Decode one document.

    Raises:
        ValidationError: If the document does not match the schema of its
            kind, or belongs to a different owner than expected
    """
    model = ENTITY_MODELS[kind]
    try:
        entity = model.model_validate(document)
    except PydanticValidationError as e:
        raise ValidationError(f"{kind.value} document", issues_from_pydantic(e)) from e

    if owner_id is not None and entity.owner_id != owner_id:
        raise ValidationError(
            f"{kind.value} document",
            [
                ValidationIssue(
                    field="ownerId",
                    issue_type="owner_mismatch",
                    message=f"Document {entity.id} belongs to another owner",
                )
            ],
        )
    return entity


def decode_documents(
    kind: EntityKind,
    documents: Iterable[Document],
    owner_id: Optional[str] = None,
) -> list[LedgerEntity]:
    """
    Decode a whole collection. All or nothing.

    Issues from every malformed document are collected, with the document's
    position prefixed to the field name, before raising.

    Raises:
        ValidationError: If any document fails to decode
    """
    entities = []
    issues = []
    for index, document in enumerate(documents):
        try:
            entities.append(decode_document(kind, document, owner_id))
        except ValidationError as e:
            issues.extend(
                issue.model_copy(update={"field": f"[{index}].{issue.field}"})
                for issue in e.issues
            )
    if issues:
        raise ValidationError(f"{kind.value} snapshot", issues)
    return entities
