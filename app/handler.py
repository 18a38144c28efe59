"""
AWS Lambda entrypoint for the repository enricher

Event-driven handler triggered by EventBridge Scheduler.
No HTTP server logic - just direct function invocation.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from app.jobs.enrichment_pass import run_enrichment_pass

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    AWS Lambda entrypoint.

    Dispatches on `event["source"]`. Supported payloads:
    - {"source": "enrichment"}

    Default is "enrichment" if no source is provided.

    Returns:
        Dictionary with statusCode, source, and result
    """
    source = (event or {}).get("source", "enrichment")
    logger.info(f"Lambda invoked with source: {source}")

    try:
        if source == "enrichment":
            result = asyncio.run(run_enrichment_pass())
        else:
            error_msg = f"Unknown source: {source}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info(f"Enrichment run finished: success={result.get('success')} stats={result.get('stats')}")

        return {
            "statusCode": 200,
            "source": source,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "source": source,
            "error": str(e),
        }


# Allow local testing via `python -m app.handler`
if __name__ == "__main__":
    print(lambda_handler({"source": "enrichment"}, None))
