"""
Per-chunk extraction: prompt one page group and parse its transactions.
"""

import logging

from statement_extractor.errors import ChunkParseFailure
from statement_extractor.ingest.parser import parse_transactions
from statement_extractor.llm.client import call_document_model
from statement_extractor.models import Chunk

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Extract every DEBIT transaction (money going out of the account) from these bank statement pages.

Return ONLY a JSON array, with no explanation before or after it:
[{"date": "DD/MM/YYYY", "amount": 123.45, "recipient": "name"}]

Rules:
- Debits only; skip credits, deposits, opening/closing balances and totals
- date: DD/MM/YYYY
- amount: positive number, no currency symbols or thousands separators
- recipient: payee or merchant name as printed
- If the pages contain no debit transactions, return []"""


async def process_chunk(chunk: Chunk, model: str | None = None, **client_kwargs) -> list[dict]:
    """
    Send *chunk* to the model and return the candidate transaction dicts.

    A response that cannot be parsed yields ``[]``; service errors and cost
    limits propagate to the caller.
    """
    response = await call_document_model(
        EXTRACTION_PROMPT,
        chunk.data,
        media_type="application/pdf",
        model=model,
        **client_kwargs,
    )
    try:
        records = parse_transactions(response.content)
    except ChunkParseFailure as e:
        logger.warning("Could not parse %s: %s", chunk.label, e)
        return []

    logger.info(
        "Extracted %d candidate transactions from %s%s",
        len(records), chunk.label, " (cached)" if response.cached else "",
    )
    return records
