"""
Opt-out detection.

Two stages composed explicitly: an AI classifier that answers with JSON,
and a deterministic keyword matcher used whenever the classifier has no
usable answer.
"""
import json
import logging
import re
import time
from typing import Callable, Optional

from ..llm import OpenAIClient
from .types import CONFIDENCE_LEVELS, OptOutDetection

logger = logging.getLogger(__name__)

OPT_OUT_DETECTION_PROMPT = """You detect whether a customer wants to unsubscribe / opt out of receiving messages.

Analyze the message and decide if it is an opt-out request.

Common opt-out phrases:
- "הסר אותי", "הסרה", "תפסיק לשלוח לי", "הפסק", "לא רוצה עוד הודעות"
- "אל תכתוב לי", "עזוב אותי"
- "stop", "unsubscribe", "remove me"

Respond ONLY with a JSON object:
{
  "isOptOut": true/false,
  "confidence": "high"/"medium"/"low",
  "detectedPhrase": "the phrase that triggered the decision, or null"
}

Examples:
"הסר אותי" -> {"isOptOut": true, "confidence": "high", "detectedPhrase": "הסר אותי"}
"stop sending me messages" -> {"isOptOut": true, "confidence": "high", "detectedPhrase": "stop"}
"תודה רבה" -> {"isOptOut": false, "confidence": "high", "detectedPhrase": null}
"I'm busy right now" -> {"isOptOut": false, "confidence": "high", "detectedPhrase": null}

Return ONLY valid JSON, nothing else."""

HIGH_CONFIDENCE_KEYWORDS = (
    "הסר",
    "הסרה",
    "תפסיק",
    "הפסק",
    "stop",
    "unsubscribe",
    "remove",
)

MEDIUM_CONFIDENCE_KEYWORDS = (
    "עזוב",
    "אל תכתוב",
    "לא רוצה",
    "די",
)

# Medium keywords only count in short messages
MEDIUM_MAX_LENGTH = 20

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")


def keyword_fallback(message: str) -> OptOutDetection:
    """Deterministic keyword matcher."""
    lower_message = message.lower().strip()

    for keyword in HIGH_CONFIDENCE_KEYWORDS:
        if keyword in lower_message:
            return OptOutDetection(is_opt_out=True, confidence="high", detected_phrase=keyword)

    if len(lower_message) < MEDIUM_MAX_LENGTH:
        for keyword in MEDIUM_CONFIDENCE_KEYWORDS:
            if keyword in lower_message:
                return OptOutDetection(is_opt_out=True, confidence="medium", detected_phrase=keyword)

    return OptOutDetection(is_opt_out=False, confidence="high")


def parse_classifier_answer(answer: str) -> Optional[OptOutDetection]:
    """Parse the classifier JSON, tolerating markdown fences. None when unusable."""
    cleaned = _FENCE_RE.sub("", answer.strip()).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        return None

    if not isinstance(data, dict) or not isinstance(data.get("isOptOut"), bool):
        return None

    confidence = str(data.get("confidence", "")).lower()
    if confidence not in CONFIDENCE_LEVELS:
        return None

    phrase = data.get("detectedPhrase")
    return OptOutDetection(
        is_opt_out=data["isOptOut"],
        confidence=confidence,
        detected_phrase=str(phrase) if phrase else None,
    )


class AIOptOutClassifier:
    """Primary stage: asks the completion service and parses its JSON verdict."""

    def __init__(self, llm: OpenAIClient, timeout_s: float = 15.0):
        self.llm = llm
        self.timeout_s = timeout_s

    async def classify(self, message: str) -> Optional[OptOutDetection]:
        answer = await self.llm.complete(
            [
                {"role": "system", "content": OPT_OUT_DETECTION_PROMPT},
                {"role": "user", "content": message},
            ],
            temperature=0,
            max_tokens=100,
            timeout_s=self.timeout_s,
        )
        if answer is None:
            return None

        detection = parse_classifier_answer(answer)
        if detection is None:
            logger.warning("OPTOUT|classifier_unparseable|answer=%s", answer[:100])
        return detection


class OptOutDetector:
    """Runs the primary classifier and, when it has no answer, the fallback."""

    def __init__(
        self,
        classifier: Optional[AIOptOutClassifier] = None,
        fallback: Callable[[str], OptOutDetection] = keyword_fallback,
    ):
        self.classifier = classifier
        self.fallback = fallback

    async def detect(self, message: str) -> OptOutDetection:
        start_time = time.time()

        detection = None
        if self.classifier is not None:
            detection = await self.classifier.classify(message)

        if detection is None:
            logger.warning("OPTOUT|classifier_unavailable|using_keyword_fallback")
            detection = self.fallback(message)

        duration_ms = int((time.time() - start_time) * 1000)
        if detection.is_opt_out:
            logger.info(
                "OPTOUT|detected|confidence=%s|phrase=%s|duration_ms=%d",
                detection.confidence, detection.detected_phrase, duration_ms,
            )
        else:
            logger.debug("OPTOUT|not_detected|duration_ms=%d", duration_ms)

        return detection
