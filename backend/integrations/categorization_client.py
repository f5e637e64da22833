"""AI categorization client.

Uses the Anthropic SDK to assign spending categories to transactions and
to decide which transactions match a budget's free-text filter. Only
background jobs use this client; the sync engines never call it directly.
"""

import json
import logging
from dataclasses import dataclass

import anthropic

from config import settings
from integrations.exceptions import CategorizationError

logger = logging.getLogger(__name__)

MAX_TOKENS = 8192

CATEGORIZE_SYSTEM_PROMPT = """You categorize personal finance transactions.
Reply with a JSON array only, one object per input transaction:
[{{"transaction_id": "...", "category": "..."}}]
{rules}"""

BUDGET_FILTER_SYSTEM_PROMPT = """You decide which transactions belong to a budget.
Budget filter: {filter_prompt}
Reply with a JSON array only, one object per input transaction:
[{{"transaction_id": "...", "matches": true}}]"""


@dataclass
class CategorizedTransaction:
    transaction_id: str
    category: str


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


class CategorizationClient:
    """Batching wrapper around ``anthropic.Anthropic().messages``.

    Transactions are plain dicts with at least ``transaction_id``; every
    other key is passed through to the model as context.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        batch_size: int | None = None,
        client: anthropic.Anthropic | None = None,
        timeout: float = 120.0,
    ):
        self._api_key = api_key or settings.ANTHROPIC_API_KEY
        self._model = model or settings.CATEGORIZATION_MODEL
        self._batch_size = batch_size or settings.CATEGORIZATION_BATCH_SIZE
        self._client = client
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> anthropic.Anthropic:
        """Anthropic SDK client, created on first use."""
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def categorize(
        self, transactions: list[dict], rules: str | None = None
    ) -> list[CategorizedTransaction]:
        """Assign a category to each transaction, batching requests.

        Raises:
            CategorizationError: If any batch fails; no partial result is
                returned.
        """
        system = CATEGORIZE_SYSTEM_PROMPT.format(
            rules=f"Custom rules:\n{rules}" if rules else ""
        )
        results: list[CategorizedTransaction] = []
        batches = list(self._batches(transactions))
        for i, batch in enumerate(batches, start=1):
            reply = self._request(system, batch)
            try:
                results.extend(
                    CategorizedTransaction(
                        transaction_id=str(item["transaction_id"]),
                        category=str(item["category"]),
                    )
                    for item in reply
                )
            except (KeyError, TypeError) as e:
                raise CategorizationError(
                    f"Batch {i}/{len(batches)} returned malformed items: {e}"
                ) from e
            logger.debug("Categorization batch %d/%d: %d items", i, len(batches), len(batch))
        return results

    def filter_for_budget(
        self, transactions: list[dict], filter_prompt: str
    ) -> set[str]:
        """Return the ids of transactions matching ``filter_prompt``."""
        system = BUDGET_FILTER_SYSTEM_PROMPT.format(filter_prompt=filter_prompt)
        matched: set[str] = set()
        for batch in self._batches(transactions):
            for item in self._request(system, batch):
                if isinstance(item, dict) and item.get("matches") and item.get("transaction_id"):
                    matched.add(str(item["transaction_id"]))
        return matched

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _batches(self, transactions: list[dict]):
        for start in range(0, len(transactions), self._batch_size):
            yield transactions[start:start + self._batch_size]

    def _request(self, system: str, batch: list[dict]) -> list:
        if not self.is_configured():
            raise CategorizationError("ANTHROPIC_API_KEY is not configured")

        try:
            message = self.client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                system=system,
                messages=[{"role": "user", "content": json.dumps(batch, default=str)}],
            )
        except anthropic.APIError as e:
            logger.error("Anthropic request failed: %s", e)
            raise CategorizationError(f"Anthropic request failed: {e}") from e

        if message.stop_reason == "max_tokens":
            raise CategorizationError(
                f"Response truncated for a batch of {len(batch)} transactions; "
                "reduce CATEGORIZATION_BATCH_SIZE"
            )

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise CategorizationError("Empty response from Anthropic")

        try:
            parsed = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            raise CategorizationError(f"Failed to parse categorization response: {e}") from e
        if not isinstance(parsed, list):
            raise CategorizationError("Categorization response is not a JSON array")
        return parsed
