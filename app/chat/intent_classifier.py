"""
Intent classification for rider messages.

A small multinomial naive Bayes model trained once from curated phrases.
Confidence comes from the margin between the two best intents, scaled by how
much of the message the model actually recognised.
"""
import logging
import math
import re
from collections import Counter
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .models import IntentResult

logger = logging.getLogger(__name__)

UNKNOWN_INTENT = "unknown"

TRAINING_PHRASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "where_is_driver": (
        "where is my driver",
        "where is driver",
        "where is my ride",
        "where is my vehicle",
        "wheres my ride",
        "how far is my driver",
        "when will driver arrive",
        "driver location",
        "how long until driver arrives",
        "show driver location",
        "driver eta",
        "how many minutes until driver",
        "track my driver",
        "locate driver",
        "show me where my driver is",
        "where is the car",
        "check driver location",
        "when will you arrive",
        "how far away is the driver",
        "driver position",
        "is the driver close",
    ),
    "driver_late": (
        "driver is late",
        "its late",
        "running late",
        "why is driver late",
        "driver is very late",
        "driver taking too long",
        "driver delayed",
        "long wait time",
        "driver not coming",
        "been waiting too long",
        "driver eta wrong",
        "waiting forever",
        "already waited 20 minutes",
        "driver still not here",
        "this is taking too long",
        "the driver has not shown up",
        "how much longer do i wait",
    ),
    "contact_driver": (
        "contact driver",
        "talk to driver",
        "reach driver",
        "communicate with driver",
        "get in touch with driver",
        "connect me with driver",
        "how to contact driver",
        "i need to talk to my driver",
        "how can i get hold of the driver",
    ),
    "cannot_contact_driver": (
        "cannot reach driver",
        "i cannot reach my driver",
        "i cant reach my driver",
        "unable to contact driver",
        "driver not answering",
        "driver is not answering my calls",
        "call failed",
        "cannot call driver",
        "driver not responding",
        "no response from driver",
        "unreachable driver",
        "driver unavailable",
        "driver wont answer",
        "driver ignoring calls",
        "driver phone off",
        "cant get through to driver",
        "driver is not picking up",
    ),
    "cancel_booking": (
        "cancel booking",
        "cancel ride",
        "cancel my ride",
        "i want to cancel",
        "cancel this ride",
        "dont want ride",
        "stop the ride",
        "cancel the booking",
        "cancel order",
        "i dont want to ride anymore",
        "cancel everything",
        "abort ride",
        "i changed my mind cancel",
        "i no longer need the ride",
    ),
    "payment_query": (
        "how much does it cost",
        "how much will the ride cost",
        "how much is the fare",
        "what is the fare",
        "show me the fare",
        "fare estimate",
        "fare details",
        "fare breakdown",
        "price of ride",
        "ride cost",
        "total cost",
        "payment amount",
        "why is fare so high",
        "payment issue",
        "refund",
        "billing question",
        "fare question",
        "payment problem",
        "charge question",
        "why was i charged",
        "what is the price",
        "how much do i owe",
        "estimated fare",
        "show payment details",
        "what will i pay",
        "how am i paying",
    ),
    "safety_concern": (
        "i feel unsafe",
        "safety issue",
        "driver behavior",
        "uncomfortable",
        "danger",
        "threat",
        "harassment",
        "emergency",
        "help me",
        "i am in danger",
        "driver is scaring me",
        "driver is behaving weirdly",
        "not safe",
        "feel threatened",
    ),
    "call_driver": (
        "call my driver",
        "call driver now",
        "ring driver",
        "phone call driver",
        "dial driver",
        "call the driver",
        "please call driver",
        "i want to call driver",
        "make a call to driver",
        "phone driver",
    ),
    "message_driver": (
        "message driver",
        "text driver",
        "send message",
        "message my driver",
        "text my driver",
        "send text to driver",
        "send a message to my driver",
        "write to driver",
        "chat with driver",
    ),
    "talk_to_agent": (
        "talk to agent",
        "support",
        "customer service",
        "speak to human",
        "agent",
        "representative",
        "help from agent",
        "connect me to support",
        "i need a human",
        "escalate",
        "talk to a person",
        "live agent",
        "human support",
        "real person please",
    ),
    "ok_thanks": (
        "ok thanks",
        "okay thank you",
        "thanks",
        "thank you",
        "got it",
        "great thanks",
        "perfect",
        "all good",
        "that helps",
        "no thats all",
    ),
})

STOPWORDS = frozenset({
    "a", "an", "the", "is", "are", "am", "was", "my", "me", "i", "im", "to",
    "of", "for", "this", "that", "it", "its", "please", "so", "do", "does",
    "be", "been", "has", "have", "with", "you", "your", "can", "could",
    "would", "just", "and", "on", "in", "at", "there", "will",
})

_PUNCTUATION = re.compile(r"[^\w\s]")
_ENTITY_PATTERNS = {
    "minutes": re.compile(r"(\d+)\s*(?:minutes?|mins?)\b"),
    "hours": re.compile(r"(\d+)\s*(?:hours?|hrs?)\b"),
}
_URGENT = re.compile(r"\b(?:urgent|asap|immediately|now)\b")

# Posterior ratios beyond this already map to full confidence
_MAX_LOG_RATIO = 20.0


def normalize(text: str) -> str:
    return " ".join(_PUNCTUATION.sub("", text.lower()).split())


def tokenize(text: str) -> List[str]:
    return [token for token in normalize(text).split() if token not in STOPWORDS]


def extract_entities(text: str) -> Dict[str, object]:
    normalized = normalize(text)
    entities: Dict[str, object] = {}
    for key, pattern in _ENTITY_PATTERNS.items():
        match = pattern.search(normalized)
        if match:
            entities[key] = int(match.group(1))
    if _URGENT.search(normalized):
        entities["urgent"] = True
    return entities


def margin_confidence(log_scores: Sequence[float]) -> float:
    """Map the gap between the best two log scores onto [0.5, 1.0]."""
    if not log_scores:
        return 0.0
    if len(log_scores) == 1:
        return 0.95
    ordered = sorted(log_scores, reverse=True)
    ratio = math.exp(min(ordered[0] - ordered[1], _MAX_LOG_RATIO))
    return min(0.5 + (ratio - 1) * 0.15, 1.0)


class NaiveBayesModel:
    """Multinomial naive Bayes with add-one smoothing."""

    def __init__(self, documents: Mapping[str, Sequence[str]]):
        self.labels: List[str] = []
        self._log_prior: Dict[str, float] = {}
        self._word_counts: Dict[str, Counter] = {}
        self._totals: Dict[str, int] = {}
        self.vocabulary = set()

        total_docs = sum(len(phrases) for phrases in documents.values())
        for label, phrases in documents.items():
            counts = Counter()
            for phrase in phrases:
                counts.update(tokenize(phrase))
            self.labels.append(label)
            self._word_counts[label] = counts
            self._totals[label] = sum(counts.values())
            self._log_prior[label] = math.log(len(phrases) / total_docs)
            self.vocabulary.update(counts)

    def log_scores(self, tokens: Sequence[str]) -> Dict[str, float]:
        vocab_size = len(self.vocabulary)
        scores = {}
        for label in self.labels:
            denominator = self._totals[label] + vocab_size
            counts = self._word_counts[label]
            score = self._log_prior[label]
            for token in tokens:
                score += math.log((counts[token] + 1) / denominator)
            scores[label] = score
        return scores


class IntentClassifier:
    """Maps free text to one intent of a closed set."""

    def __init__(
        self,
        training_phrases: Mapping[str, Sequence[str]] = TRAINING_PHRASES,
        enabled: bool = True,
    ):
        self.enabled = enabled
        self.model = NaiveBayesModel(training_phrases)
        self.intents = frozenset(self.model.labels)

    def classify(self, text: Optional[str]) -> IntentResult:
        if not self.enabled or not text or not text.strip():
            return IntentResult(intent=UNKNOWN_INTENT, confidence=0.0)
        try:
            return self._classify(text)
        except Exception:
            logger.exception("Intent classification failed")
            return IntentResult(intent=UNKNOWN_INTENT, confidence=0.0)

    def _classify(self, text: str) -> IntentResult:
        tokens = tokenize(text)
        known = [token for token in tokens if token in self.model.vocabulary]
        if not known:
            logger.debug("No known vocabulary in message, returning unknown")
            return IntentResult(intent=UNKNOWN_INTENT, confidence=0.0, entities=extract_entities(text))

        scores = self.model.log_scores(known)
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        # Filler words outside the vocabulary do not dilute a clear winner
        confidence = margin_confidence([score for _, score in ranked])

        intent = ranked[0][0]
        runner_up = ranked[1][0] if len(ranked) > 1 else None
        logger.info("Intent detected: %s (confidence=%.2f, runner_up=%s)", intent, confidence, runner_up)
        return IntentResult(
            intent=intent,
            confidence=confidence,
            entities=extract_entities(text),
            action=intent,
            runner_up=runner_up,
        )
