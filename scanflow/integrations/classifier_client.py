import httpx
import logging
from typing import Dict, Any, Optional

from scanflow.core.errors import DependencyUnavailableError
from scanflow.models.document import Document

logger = logging.getLogger(__name__)


class ClassifierClient:
    """
    HTTP client for the external document classifier.

    The classifier is a black box: GET /api/v1/classify/{correlationToken}
    answers with a JSON object in either the clean or the noisy field shape.
    Failures are never retried here; the caller decides what to do.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        :param base_url: Classifier base URL (e.g., "http://classifier:8080")
        :param timeout: Request timeout in seconds
        :param transport: Optional httpx transport (used to fake the classifier in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def classify(self, document: Document, correlation_token: str) -> Dict[str, Any]:
        """
        Request a classification for one document.

        :param document: Document to classify; id and filename identify its content
        :param correlation_token: Per-request token used in the URL and the X-Correlation-ID header
        :return: Raw response body (a JSON object)
        :raises DependencyUnavailableError: On timeout, transport error, non-2xx status or a non-object body
        """
        url = f"/api/v1/classify/{correlation_token}"
        params = {"document_id": document.id, "filename": document.filename}
        headers = {"X-Correlation-ID": correlation_token}

        logger.info(f"Requesting classification for {document.id} (token {correlation_token})")

        try:
            response = await self._client.get(url, params=params, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Classifier timed out after {self.timeout}s for {document.id}: {e}")
            raise DependencyUnavailableError(
                f"Classifier timed out after {self.timeout}s", document_id=document.id
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"Classifier returned HTTP {e.response.status_code} for {document.id}")
            raise DependencyUnavailableError(
                f"Classifier returned HTTP {e.response.status_code}", document_id=document.id
            )
        except httpx.HTTPError as e:
            logger.error(f"Classifier unreachable for {document.id}: {e}")
            raise DependencyUnavailableError(f"Classifier unreachable: {e}", document_id=document.id)
        except ValueError as e:
            logger.error(f"Classifier response for {document.id} is not valid JSON: {e}")
            raise DependencyUnavailableError("Classifier response is not valid JSON", document_id=document.id)

        if not isinstance(body, dict):
            logger.error(f"Classifier response for {document.id} is not a JSON object: {type(body).__name__}")
            raise DependencyUnavailableError("Classifier response is not a JSON object", document_id=document.id)

        return body

    async def aclose(self):
        await self._client.aclose()
