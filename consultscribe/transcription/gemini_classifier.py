"""Gemini-backed classifier for clinically relevant words."""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Sequence

import aiohttp

from .base import AbstractMedicalTermClassifier
from ..exceptions import ClassificationError
from ..models.validation import MedicalCategory, MedicalTermDetection, term_key

logger = logging.getLogger(__name__)

MEDICAL_DETECTION_PROMPT = """
ROLE
You are a medical assistant specialised in Spanish clinical terminology.
Analyse words transcribed from a medical consultation and identify which of
them are CLINICALLY RELEVANT and could change the diagnosis if mistranscribed.

MANDATORY OUTPUT FORMAT (JSON only, no additional text):
[
  {"word": "amoxicilina", "isMedical": true, "category": "medication"},
  {"word": "hola", "isMedical": false}
]

VALID CATEGORIES:
- "medication": drugs and doses (amoxicilina, paracetamol, 500mg)
- "diagnosis": diseases and conditions (diabetes, hipertensión, bronquitis)
- "symptom": symptoms and clinical signs (fiebre, náuseas, mareos, tos)
- "anatomy": body parts and organs (abdomen, corazón, hígado, rodilla)
- "procedure": medical procedures (radiografía, biopsia, cirugía)
- "pain_verb": pain or sensation verbs (duele, pica, arde, punza, molesta)
- "intensity": severity descriptors (mucho, severo, leve, moderado, intenso)
- "temporal": medical temporal terms (crónico, agudo, intermitente, semanas)
- "emotional": relevant mental states (ansiedad, depresión, estrés, insomnio)
- "vital_sign": vital signs and measurements (presión, pulso, temperatura)
- "other": any other medical term

INCLUDE a word when it:
1. Could change a diagnosis if mistranscribed (gastritis vs gastroenteritis)
2. Is, or could be confused with, a medication
3. Describes the anatomical location of the problem
4. Describes severity, frequency or nature of a symptom

EXCLUDE (isMedical: false) articles, prepositions, conjunctions, pronouns,
common non-medical verbs, greetings and filler words, isolated numbers
without medical context, and misspellings of common non-medical words.

RULES:
1. If a word LOOKS like a mistranscribed medical term, mark it as medical
2. Physical sensation verbs ARE medical
3. Intensity adjectives ARE medical when they describe symptoms
4. Only include "category" when isMedical is true
5. Answer ONLY with the JSON array
"""

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def parse_detections(text: str, words: Sequence[str]) -> List[MedicalTermDetection]:
    """Turn a model reply into one detection per requested word.

    Anything missing or unparseable defaults to non-medical.
    """
    entries: List[Dict[str, Any]] = []
    match = _JSON_ARRAY.search(text or "")
    if match:
        try:
            parsed = json.loads(match.group(0))
            if isinstance(parsed, list):
                entries = [e for e in parsed if isinstance(e, dict) and isinstance(e.get("word"), str)]
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse classifier response: {e}")
    else:
        logger.error("No JSON array found in classifier response")

    by_word = {term_key(entry["word"]): entry for entry in entries}
    detections = []
    for word in words:
        entry = by_word.get(term_key(word))
        is_medical = bool(entry.get("isMedical")) if entry else False
        detections.append(MedicalTermDetection(
            word=word,
            is_medical=is_medical,
            category=MedicalCategory.parse(entry.get("category")) if entry and is_medical else None,
        ))
    return detections


class GeminiMedicalTermClassifier(AbstractMedicalTermClassifier):
    """Sends flagged words to Gemini and reads back a medical/non-medical verdict."""

    def __init__(self,
                 api_key: str,
                 model: str = "gemini-2.5-flash",
                 base_url: str = "https://generativelanguage.googleapis.com/v1beta",
                 temperature: float = 0.1,
                 max_output_tokens: int = 2048,
                 timeout: float = 60.0):
        """Initialize Gemini classifier.

        Args:
            api_key: Gemini API key
            model: Gemini model name
            base_url: Generative Language API base URL
            temperature: Low temperature keeps classification consistent
            max_output_tokens: Maximum tokens in the reply
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("Gemini API key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout

        logger.info(f"GeminiMedicalTermClassifier initialized with model: {model}")

    def build_prompt(self, words: Sequence[str]) -> str:
        return f"{MEDICAL_DETECTION_PROMPT}\nWORDS TO ANALYSE:\n{', '.join(words)}\n\nAnswer with a JSON array:"

    async def classify(self, words: Sequence[str]) -> List[MedicalTermDetection]:
        words = [w.lower() for w in words]
        if not words:
            return []

        logger.info(f"Analysing {len(words)} unique words")
        url = f"{self.base_url}/models/{self.model}:generateContent"
        data = {
            "contents": [{"parts": [{"text": self.build_prompt(words)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, params={"key": self.api_key}, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ClassificationError(f"Gemini API error: {response.status} - {error_text}")
                    result = await response.json()
        except aiohttp.ClientError as e:
            raise ClassificationError(f"Medical term detection request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ClassificationError("Medical term detection timed out") from e

        text = self._response_text(result)
        logger.debug(f"Gemini response: {text[:200]}...")

        detections = parse_detections(text, words)
        logger.info(f"Detected {sum(1 for d in detections if d.is_medical)} medical terms")
        return detections

    @staticmethod
    def _response_text(result: Dict[str, Any]) -> str:
        candidates = result.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
