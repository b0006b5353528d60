"""
Quote persistence: flattening quote documents into queryable columns and
reconciling an owner's stored quotes against a client-supplied list.

The caller's document is always stored verbatim in ``full_quote``. The
flattened columns are derived from it and are never used to rebuild it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from quotes_backend.db import DbClient
from quotes_backend.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "CAD"
DEFAULT_STATUS = "draft"
FALLBACK_UID_TOKEN = "quote"


def first_value(*values: Any) -> Any:
    """Return the first value that is neither None nor a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value
    return None


def normalize_date(value: Any) -> Optional[str]:
    """
    Reduce a date-like value to ``YYYY-MM-DD``; anything unparseable is None.

    Timezone-aware timestamps are converted to UTC first. Numbers are read as
    epoch milliseconds.
    """
    if not value or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").replace("$", "").strip())
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _project_section(quote: dict) -> dict:
    project = quote.get("project")
    return project if isinstance(project, dict) else {}


def quote_uid_for(quote: dict, owner_id: str) -> str:
    """
    The document's own id when present, else ``{projectNumber}-{owner}``.

    Documents with neither collapse to ``quote-{owner}``, so an owner can only
    hold one such document at a time.
    """
    explicit = first_value(quote.get("id"))
    if explicit is not None:
        return str(explicit)
    project_number = first_value(
        quote.get("projectNumber"), _project_section(quote).get("projectNumber")
    )
    return f"{project_number or FALLBACK_UID_TOKEN}-{owner_id}"


@dataclass
class QuoteProjection:
    quote_uid: str
    project_number: Optional[str]
    client_name: Optional[str]
    client_category: Optional[str]
    brand: Optional[str]
    project_name: Optional[str]
    brief_date: Optional[str]
    in_market_date: Optional[str]
    project_completion_date: Optional[str]
    total_program_budget: Optional[float]
    rate_card: Optional[str]
    currency: str
    phases: list = field(default_factory=list)
    phase_settings: dict = field(default_factory=dict)
    status: str = DEFAULT_STATUS
    created_by: str = ""
    updated_by: str = ""
    full_quote: dict = field(default_factory=dict)

    def as_row(self) -> dict:
        return asdict(self)


def project_quote(
    quote: dict, owner_id: str, quote_uid: Optional[str] = None
) -> QuoteProjection:
    project = _project_section(quote)
    phases = project.get("phases")
    phase_settings = project.get("phaseSettings")
    return QuoteProjection(
        quote_uid=quote_uid or quote_uid_for(quote, owner_id),
        project_number=_as_text(
            first_value(quote.get("projectNumber"), project.get("projectNumber"))
        ),
        client_name=_as_text(
            first_value(quote.get("clientName"), project.get("clientName"))
        ),
        client_category=_as_text(
            first_value(project.get("clientCategory"), quote.get("clientCategory"))
        ),
        brand=_as_text(first_value(quote.get("brand"), project.get("brand"))),
        project_name=_as_text(
            first_value(quote.get("projectName"), project.get("projectName"))
        ),
        brief_date=normalize_date(
            first_value(project.get("briefDate"), quote.get("briefDate"))
        ),
        in_market_date=normalize_date(
            first_value(project.get("inMarketDate"), quote.get("inMarketDate"))
        ),
        project_completion_date=normalize_date(
            first_value(
                project.get("projectCompletionDate"),
                quote.get("projectCompletionDate"),
            )
        ),
        total_program_budget=_to_number(
            first_value(project.get("totalProgramBudget"), quote.get("totalRevenue"))
        ),
        rate_card=_as_text(first_value(project.get("rateCard"), quote.get("rateCard"))),
        currency=str(
            first_value(quote.get("currency"), project.get("currency"), DEFAULT_CURRENCY)
        ),
        phases=phases if isinstance(phases, list) else [],
        phase_settings=phase_settings if isinstance(phase_settings, dict) else {},
        status=str(first_value(quote.get("status"), DEFAULT_STATUS)),
        created_by=owner_id,
        updated_by=owner_id,
        full_quote=quote,
    )


def parse_quotes_value(value: Any) -> list:
    """Accept a list, a JSON-encoded list, or anything else as empty."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _validate_documents(quotes: Iterable[Any]) -> list[dict]:
    documents = list(quotes)
    for index, quote in enumerate(documents):
        if not isinstance(quote, dict):
            raise ValidationError(
                "quotes", f"Quote at position {index} must be an object"
            )
    return documents


class QuoteRepository:
    """Owner-scoped quote reads and writes on top of a DbClient."""

    def __init__(self, db: DbClient):
        self.db = db

    def replace_quotes(
        self,
        owner_id: str,
        quotes: Iterable[Any],
        owner_email: Optional[str] = None,
    ) -> list[str]:
        """
        Make the owner's stored quotes exactly match ``quotes``.

        Runs as one transaction serialised per owner: ensure the owner row,
        upsert every document, then delete the owner's rows that are not in
        the computed id set. An empty list deletes all of the owner's quotes.
        Returns the computed quote ids in input order.
        """
        if not owner_id:
            raise ValidationError("owner", "Owner id is required")
        documents = _validate_documents(quotes)
        projections = [project_quote(quote, owner_id) for quote in documents]
        keep_ids = list(dict.fromkeys(p.quote_uid for p in projections))

        with self.db.transaction(owner_id) as writer:
            writer.ensure_user(owner_id, owner_email)
            for projection in projections:
                writer.upsert_quote(projection)
            removed = writer.delete_quotes_except(owner_id, keep_ids)

        logger.info(
            "Reconciled quotes for %s: %d kept, %d removed",
            owner_id,
            len(keep_ids),
            removed,
        )
        return keep_ids

    def get_quotes_for_user(self, owner_id: str) -> list[dict]:
        return self.db.list_quotes(owner_id)

    def get_quote(self, owner_id: str, quote_uid: str) -> dict:
        quote = self.db.get_quote(owner_id, quote_uid)
        if quote is None:
            raise NotFound("Quote not found")
        return quote

    def upsert_quote(
        self,
        owner_id: str,
        quote_uid: str,
        quote: Any,
        owner_email: Optional[str] = None,
    ) -> dict:
        if not quote_uid:
            raise ValidationError("id", "Quote id is required")
        if not isinstance(quote, dict):
            raise ValidationError("quote", "Quote must be an object")
        projection = project_quote(quote, owner_id, quote_uid=quote_uid)
        with self.db.transaction(owner_id) as writer:
            writer.ensure_user(owner_id, owner_email)
            writer.upsert_quote(projection)
        return self.get_quote(owner_id, quote_uid)

    def delete_quote(self, owner_id: str, quote_uid: str) -> None:
        with self.db.transaction(owner_id) as writer:
            removed = writer.delete_quote(owner_id, quote_uid)
        if not removed:
            raise NotFound("Quote not found")
