import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple, Union

from scanflow.core.category_config import get_category_label
from scanflow.core.errors import ConflictError, StorageError
from scanflow.integrations.classifier_client import ClassifierClient
from scanflow.models.document import Document, DocumentMode, DocumentStatus
from scanflow.storage.folders import FolderStateMapper
from scanflow.storage.registry import DocumentRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

# Metadata field -> classifier keys, in order of preference
FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "category": ("kind", "category"),
    "docId": ("doc_id",),
    "subject": ("doc_subject",),
    "docDate": ("doc_date_parsed", "doc_date_sic", "doc_date"),
}

VALUE_SUFFIX = "_val"
SCORE_SUFFIX = "_score"


def _as_score(value: Any) -> Optional[float]:
    """Parse a score; anything that is not a finite number counts as absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or math.isinf(score):
        return None
    return score


def _as_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def overall_confidence(field_scores: Dict[str, Optional[float]], top_level: Optional[float]) -> float:
    """
    Mean of the per-field scores (2 decimals); else the top-level confidence;
    else 0.5. Always clamped to [0, 1].
    """
    scores = [score for score in field_scores.values() if score is not None]
    if scores:
        value = round(sum(scores) / len(scores), 2)
    elif top_level is not None:
        value = top_level
    else:
        value = DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


@dataclass
class Classification:
    """Normalized classifier result."""
    category: Optional[str] = None
    doc_id: Optional[str] = None
    subject: Optional[str] = None
    doc_date: Optional[str] = None
    confidence: float = DEFAULT_CONFIDENCE
    field_scores: Dict[str, Optional[float]] = field(default_factory=dict)
    shape: str = "clean"

    def metadata(self) -> Dict[str, Any]:
        """Extracted metadata; fields the classifier did not report are left out."""
        values = {
            "category": get_category_label(self.category),
            "docId": self.doc_id,
            "subject": self.subject,
            "docDate": self.doc_date,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass
class ClassifierResponse:
    """Raw classifier body, tagged by shape."""
    shape: ClassVar[str] = "clean"
    body: Dict[str, Any]

    def _value(self, key: str) -> Any:
        return self.body.get(key)

    def normalize(self) -> Classification:
        values: Dict[str, Optional[str]] = {}
        field_scores: Dict[str, Optional[float]] = {}

        for name, keys in FIELD_KEYS.items():
            value, score = None, None
            for key in keys:
                if value is None:
                    value = _as_value(self._value(key))
                if score is None:
                    score = _as_score(self.body.get(key + SCORE_SUFFIX))
            values[name] = value
            if score is not None:
                field_scores[name] = score

        return Classification(
            category=values["category"],
            doc_id=values["docId"],
            subject=values["subject"],
            doc_date=values["docDate"],
            confidence=overall_confidence(field_scores, _as_score(self.body.get("confidence"))),
            field_scores=field_scores,
            shape=self.shape,
        )


@dataclass
class CleanResponse(ClassifierResponse):
    """Direct fields: kind/category, doc_id, doc_subject, doc_date_parsed, confidence."""
    shape: ClassVar[str] = "clean"


@dataclass
class NoisyResponse(ClassifierResponse):
    """Every field as <field>_val with a per-field <field>_score."""
    shape: ClassVar[str] = "noisy"

    def _value(self, key: str) -> Any:
        value = self.body.get(key + VALUE_SUFFIX)
        if value is None:
            value = self.body.get(key)
        return value


def parse_classifier_response(body: Dict[str, Any]) -> Union[CleanResponse, NoisyResponse]:
    """Tag a raw classifier body with its shape."""
    if any(str(key).endswith(VALUE_SUFFIX) for key in body):
        return NoisyResponse(body)
    return CleanResponse(body)


class ClassificationRouter:
    """
    Obtains a classification for a document and routes it by confidence.

    Flow (under the document lock):
    Classifier call -> Normalization -> Routing decision -> Move + registry update -> Side-record

    All collaborators are injected via constructor.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        mapper: FolderStateMapper,
        classifier: ClassifierClient,
        review_threshold: float = 0.60,
        auto_process_threshold: float = 0.80,
        token_factory: Optional[Callable[[], str]] = None,
    ):
        """
        :param registry: Document registry
        :param mapper: Folder-state mapper performing the moves
        :param classifier: Client for the external classifier
        :param review_threshold: Confidence below this goes to needs_review
        :param auto_process_threshold: Confidence at or above this is processed automatically
        :param token_factory: Generates correlation tokens. Defaults to uuid4 hex
        """
        self.registry = registry
        self.mapper = mapper
        self.classifier = classifier
        self.review_threshold = review_threshold
        self.auto_process_threshold = auto_process_threshold
        self.token_factory = token_factory or (lambda: uuid.uuid4().hex)

    def decide_status(self, confidence: float) -> DocumentStatus:
        """Routing policy, first match wins."""
        if confidence < self.review_threshold:
            return DocumentStatus.NEEDS_REVIEW
        if confidence >= self.auto_process_threshold:
            return DocumentStatus.PROCESSED
        return DocumentStatus.INBOX

    async def emit_side_record(self, document: Document):
        """
        Write the processing side-record for a processed document.

        The transition has already happened; a failed write is logged only.
        """
        try:
            await self.mapper.write_side_record(document, processed_at=document.updated_at)
        except StorageError as e:
            logger.error(f"Side-record for {document.id} could not be written: {e}")

    async def classify(self, document_id: str, user: Optional[str]) -> Document:
        """
        Classify a document and apply the resulting transition.

        Used for both first classification and explicit reclassification.

        :param document_id: Document to classify
        :param user: Acting user, stamped on the document
        :return: Updated document
        :raises NotFoundError: If the document does not exist
        :raises ConflictError: If the document is deleted or busy
        :raises DependencyUnavailableError: If the classifier fails (document untouched)
        :raises StorageError: If the move fails (document untouched)
        """
        async with self.registry.lock(document_id) as document:
            if document.status == DocumentStatus.DELETED:
                raise ConflictError(f"Document {document_id} is deleted", document_id=document_id)

            token = self.token_factory()
            logger.info(f"STEP 1 (Classifier): Requesting classification for {document_id}")
            body = await self.classifier.classify(document, token)

            classification = parse_classifier_response(body).normalize()
            logger.info(
                f"STEP 2 (Normalization) Complete. Shape: {classification.shape}, "
                f"Category: {classification.category or 'N/A'}, "
                f"Confidence: {classification.confidence:.2f}"
            )

            target = self.decide_status(classification.confidence)
            mode = DocumentMode.MANUAL if document.mode == DocumentMode.MANUAL else DocumentMode.AUTO
            logger.info(f"STEP 3 (Routing): {document.status.value} -> {target.value}")

            updated = await self.mapper.move_to(
                document,
                target,
                action="classified",
                detail=f"confidence={classification.confidence:.2f} token={token}",
                metadata=classification.metadata(),
                confidence=classification.confidence,
                mode=mode,
                user=user,
            )

            if target == DocumentStatus.PROCESSED:
                await self.emit_side_record(updated)

            logger.info(f"Classification of {document_id} completed with status: {updated.status.value}")
            return updated
