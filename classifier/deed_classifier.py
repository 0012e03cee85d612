import json
import os
import re
from dataclasses import dataclass
from typing import Optional

import structlog
from groq import Groq

log = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You classify behaviour entries for a good/bad deed ledger.
Decide whether the described deed is good (kind, helpful, honest, generous)
or bad (harmful, dishonest, unkind, careless).

Reply with JSON only:
{"is_good": true or false, "reason": "one short sentence"}"""

GOOD_WORDS = (
    "help", "helped", "donate", "donated", "volunteer", "volunteered", "shared", "share",
    "thank", "kind", "gave", "give", "rescued", "cleaned", "recycled", "taught", "fed",
    "comforted", "apologized", "apologised", "forgave", "visited", "saved", "cared",
)
BAD_WORDS = (
    "lie", "lied", "stole", "steal", "cheated", "cheat", "hit", "broke", "yelled",
    "insulted", "bullied", "ignored", "littered", "rude", "mean", "hurt", "destroyed",
    "skipped", "lazy", "cruel", "pushed", "kicked", "fought", "late",
)
NEGATIONS = ("not", "never", "didn't", "didnt", "refused", "forgot", "no")


@dataclass
class DeedClassification:
    description: str
    is_good: bool
    source: str
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "is_good": self.is_good,
            "source": self.source,
            "reason": self.reason,
        }


class DeedClassifier:
    def __init__(self, api_key: Optional[str] = None, model: str = "llama-3.3-70b-versatile"):
        self.api_key = api_key or os.getenv("GROQ_API_KEY")
        self.model = model
        self.client = Groq(api_key=self.api_key) if self.api_key else None

    @property
    def is_available(self) -> bool:
        return self.client is not None

    def classify(self, text: str) -> DeedClassification:
        if self.client:
            result = self._classify_with_groq(text)
            if result is not None:
                return result
        return self._classify_locally(text)

    def _classify_with_groq(self, text: str) -> Optional[DeedClassification]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": text}
                ],
                temperature=0.0,
                max_tokens=128
            )
        except Exception as e:
            log.warning("groq_classification_failed", error=str(e))
            return None

        data = self._extract_json(response.choices[0].message.content or "")
        if not isinstance(data.get("is_good"), bool):
            log.warning("groq_reply_unusable", model=self.model)
            return None
        return DeedClassification(description=text, is_good=data["is_good"], source="llm", reason=data.get("reason"))

    def _extract_json(self, text: str) -> dict:
        json_match = re.search(r'\{[\s\S]*\}', text)
        if json_match:
            try:
                return json.loads(json_match.group())
            except json.JSONDecodeError:
                pass
        return {}

    def _classify_locally(self, text: str) -> DeedClassification:
        words = re.findall(r"[a-z']+", text.lower())
        score = 0
        for i, word in enumerate(words):
            weight = 1 if word in GOOD_WORDS else -1 if word in BAD_WORDS else 0
            if weight and i > 0 and words[i - 1] in NEGATIONS:
                weight = -weight
            score += weight

        # ties lean good: an unrecognised description is not evidence of a bad deed
        is_good = score >= 0
        return DeedClassification(
            description=text,
            is_good=is_good,
            source="keywords",
            reason=f"keyword score {score}",
        )


if __name__ == "__main__":
    import sys
    classifier = DeedClassifier(api_key=sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Groq available: {classifier.is_available}")

    test = "Helped my neighbour shovel snow and never asked for anything"
    print(json.dumps(classifier.classify(test).to_dict(), indent=2))
