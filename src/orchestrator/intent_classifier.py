"""
Intent Classification

Fast lexical routing of a user message, run before any embedding,
retrieval or generation call. Rules are data: one table of
(intent, language, pattern, kind) entries consumed by a single matcher.

Matching is on whole tokens or whole token phrases, never raw substrings,
so "train" does not trigger the "rain" weather keyword.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import structlog

from .state import Intent

logger = structlog.get_logger()

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

# Evaluation order; first intent with a matching rule wins
INTENT_PRIORITY = (Intent.WEATHER, Intent.DIRECTIONS, Intent.WEB)


class MatchKind(str, Enum):
    TOKEN = "token"  # single whole token
    PHRASE = "phrase"  # consecutive whole tokens
    REGEX = "regex"  # sentence template over the lowercased text


@dataclass(frozen=True)
class IntentRule:
    intent: Intent
    language: str
    pattern: str
    kind: MatchKind = MatchKind.TOKEN


def _rules(intent: Intent, language: str, kind: MatchKind, patterns: Sequence[str]) -> List[IntentRule]:
    return [IntentRule(intent, language, p, kind) for p in patterns]


INTENT_RULES: List[IntentRule] = [
    # Weather
    *_rules(Intent.WEATHER, "en", MatchKind.TOKEN, ["weather", "forecast", "rain", "raining", "temperature"]),
    *_rules(Intent.WEATHER, "fr", MatchKind.TOKEN, ["météo", "meteo", "pluie", "température", "prévisions"]),
    *_rules(Intent.WEATHER, "ar", MatchKind.TOKEN, ["طقس", "الطقس", "المطر", "الحرارة"]),

    # Directions
    *_rules(Intent.DIRECTIONS, "en", MatchKind.TOKEN, [
        "bus", "train", "tram", "direction", "directions", "route", "transport", "station",
    ]),
    *_rules(Intent.DIRECTIONS, "en", MatchKind.PHRASE, ["how to get to", "how do i get to"]),
    IntentRule(Intent.DIRECTIONS, "en", r"\bfrom\s+\S.*?\s+to\s+\S", MatchKind.REGEX),
    *_rules(Intent.DIRECTIONS, "fr", MatchKind.TOKEN, [
        "itinéraire", "itineraire", "tram", "gare", "oncf", "ctm", "trajet",
    ]),
    *_rules(Intent.DIRECTIONS, "ar", MatchKind.TOKEN, ["محطة", "طريق", "حافلة", "قطار"]),
    *_rules(Intent.DIRECTIONS, "ar", MatchKind.PHRASE, ["كيف أصل"]),
    IntentRule(Intent.DIRECTIONS, "ar", r"(?<!\w)من\s+\S.*?\s+إلى\s+\S", MatchKind.REGEX),

    # Web
    *_rules(Intent.WEB, "en", MatchKind.TOKEN, ["latest", "now", "price", "reviews", "review"]),
    *_rules(Intent.WEB, "en", MatchKind.PHRASE, ["opening hours", "what is", "who is"]),
    *_rules(Intent.WEB, "fr", MatchKind.TOKEN, ["prix", "avis"]),
    *_rules(Intent.WEB, "fr", MatchKind.PHRASE, ["heures d'ouverture"]),
    *_rules(Intent.WEB, "ar", MatchKind.TOKEN, ["أحدث"]),
    *_rules(Intent.WEB, "ar", MatchKind.PHRASE, ["خبر الآن"]),
]


def tokenize(text: str) -> List[str]:
    """Lowercase whole-word tokens."""
    return _TOKEN_RE.findall((text or "").lower())


def _contains_phrase(tokens: Sequence[str], phrase: Sequence[str]) -> bool:
    n = len(phrase)
    if n == 0 or n > len(tokens):
        return False
    return any(tuple(tokens[i:i + n]) == tuple(phrase) for i in range(len(tokens) - n + 1))


class IntentClassification:
    """Intent classification result."""

    def __init__(self, intent: Intent, allow_external: bool, rule: Optional[IntentRule] = None):
        self.intent = intent
        self.allow_external = allow_external
        self.rule = rule

    @property
    def refuse(self) -> bool:
        """External intent with external lookups disabled: answer with the domain refusal."""
        return self.intent != Intent.APP_DATA and not self.allow_external

    def __repr__(self):
        return f"IntentClassification(intent={self.intent.value}, refuse={self.refuse})"


class IntentClassifier:
    """Matches text against a rule table in a fixed intent priority order."""

    def __init__(self, rules: Sequence[IntentRule] = INTENT_RULES,
                 priority: Sequence[Intent] = INTENT_PRIORITY):
        self.priority = tuple(priority)
        # Pre-split phrases and compile templates once
        self._compiled: List[Tuple[IntentRule, object]] = []
        for rule in rules:
            if rule.kind == MatchKind.REGEX:
                matcher: object = re.compile(rule.pattern, re.IGNORECASE | re.UNICODE)
            elif rule.kind == MatchKind.PHRASE:
                matcher = tuple(tokenize(rule.pattern))
            else:
                matcher = rule.pattern.lower()
            self._compiled.append((rule, matcher))

    def match(self, text: str, intent: Intent) -> Optional[IntentRule]:
        """First rule for `intent` matching `text`, or None."""
        lowered = (text or "").lower()
        tokens = tokenize(lowered)
        token_set = set(tokens)
        for rule, matcher in self._compiled:
            if rule.intent != intent:
                continue
            if rule.kind == MatchKind.TOKEN and matcher in token_set:
                return rule
            if rule.kind == MatchKind.PHRASE and _contains_phrase(tokens, matcher):
                return rule
            if rule.kind == MatchKind.REGEX and isinstance(matcher, re.Pattern) and matcher.search(lowered):
                return rule
        return None

    def classify(self, text: str, allow_external: bool) -> IntentClassification:
        """
        Classify a user message. Pure and deterministic.

        The decision does not depend on allow_external; the result only
        records it so the caller can substitute the domain refusal.
        """
        for intent in self.priority:
            rule = self.match(text, intent)
            if rule is not None:
                logger.debug("intent_classified", intent=intent.value, pattern=rule.pattern,
                             rule_language=rule.language)
                return IntentClassification(intent, allow_external, rule)
        return IntentClassification(Intent.APP_DATA, allow_external)


_default_classifier = IntentClassifier()


def classify(text: str, allow_external: bool = True) -> Intent:
    """Intent for `text` using the built-in rule table."""
    return _default_classifier.classify(text, allow_external).intent
