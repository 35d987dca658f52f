"""Question classifiers.

Each classifier is a callable ``classify(text) -> label`` returning
"general" or "account-specific". The router only depends on that shape.

keyword — rule-based match on account vocabulary, no network.
openai  — OpenAI chat completion with a one-word answer.
"""

import logging
import requests

import config
from errors import ExternalLookupError
from models import ACCOUNT_SPECIFIC, GENERAL

logger = logging.getLogger(__name__)


# ── Keyword classifier ───────────────────────────────────────────────

ACCOUNT_KEYWORDS = (
    "account", "balance", "payment", "bill", "statement", "charge",
    "transaction", "refund", "dispute", "my", "personal", "private",
)


def keyword_classify(question):
    """Label a question account-specific if it mentions account vocabulary."""
    text = (question or "").lower()
    if any(keyword in text for keyword in ACCOUNT_KEYWORDS):
        return ACCOUNT_SPECIFIC
    return GENERAL


# ── OpenAI classifier ────────────────────────────────────────────────

CLASSIFIER_PROMPT = (
    "You are a customer service classifier. Respond with ONLY 'account-specific' "
    "or 'general'. Account-specific questions require personal information to "
    "answer (like account balances, personal details, billing issues). General "
    "questions can be answered without accessing customer records (like hours "
    "of operation, general policies, how-to questions)."
)


def openai_classify(question):
    """Classify a question with an OpenAI chat completion.

    Raises ExternalLookupError when the API is unconfigured or unreachable.
    """
    if not config.OPENAI_API_KEY:
        logger.error("OPENAI_API_KEY not configured — cannot classify")
        raise ExternalLookupError("OPENAI_API_KEY not configured")

    headers = {
        "Authorization": f"Bearer {config.OPENAI_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": config.AI_MODEL,
        "messages": [
            {"role": "system", "content": CLASSIFIER_PROMPT},
            {"role": "user", "content": f'Classify this customer question: "{question}"'},
        ],
        "max_tokens": 10,
        "temperature": 0,
    }

    try:
        resp = requests.post(config.OPENAI_API_URL, json=payload, headers=headers, timeout=10)
        resp.raise_for_status()
        data = resp.json()
        answer = data["choices"][0]["message"]["content"]
    except requests.RequestException as e:
        logger.error(f"OpenAI classify error: {e}")
        raise ExternalLookupError(f"classifier unreachable: {e}") from e
    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.error(f"OpenAI classify: unexpected response shape: {e}")
        raise ExternalLookupError(f"classifier returned bad response: {e}") from e

    label = ACCOUNT_SPECIFIC if ACCOUNT_SPECIFIC in answer.strip().lower() else GENERAL
    logger.info(f"openai_classify: answer={answer.strip()!r} → {label}")
    return label


CLASSIFIERS = {
    "keyword": keyword_classify,
    "openai": openai_classify,
}


def get_classifier(name=None):
    """Return the classifier callable configured by name."""
    name = name or config.CLASSIFIER
    try:
        return CLASSIFIERS[name]
    except KeyError:
        raise ValueError(f"unknown classifier {name!r}; expected one of {sorted(CLASSIFIERS)}") from None
