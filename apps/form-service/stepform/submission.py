import asyncio
import json
import logging
import os
from typing import Dict

import requests

from stepform.models import FieldValue
from stepform.session import Submitter

log = logging.getLogger(__name__)

SUBMISSION_FILENAME = "formData.json"
WEBHOOK_TIMEOUT = float(os.getenv("SUBMISSION_WEBHOOK_TIMEOUT", "30"))


class SubmissionError(RuntimeError):
    pass


def serialize_submission(values: Dict[str, FieldValue]) -> str:
    return json.dumps(values, indent=2)


async def export_json(values: Dict[str, FieldValue]) -> str:
    """Default submitter: hand back the JSON document offered for download."""
    return serialize_submission(values)


def post_submission(url: str, values: Dict[str, FieldValue], timeout: float = WEBHOOK_TIMEOUT) -> None:
    headers = {"Content-Type": "application/json"}
    response = requests.post(url, json=values, headers=headers, timeout=timeout)
    if response.status_code >= 400:
        raise SubmissionError(f"{response.status_code} {response.text[:400]}")
    log.info("Forwarded submission with %d values to %s", len(values), url)


def make_webhook_submitter(url: str, timeout: float = WEBHOOK_TIMEOUT) -> Submitter:
    """Submitter that forwards the values to ``url`` before exporting them.

    The POST runs in a worker thread; failures are raised as-is and never retried.
    """

    async def submit(values: Dict[str, FieldValue]) -> str:
        await asyncio.to_thread(post_submission, url, values, timeout)
        return serialize_submission(values)

    return submit
