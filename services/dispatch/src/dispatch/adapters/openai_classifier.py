"""Risk classifier adapter using an OpenAI vision model."""

import base64
import json
import logging

from services.dispatch.src.dispatch.config import settings
from services.dispatch.src.dispatch.core.categories import ALL_CATEGORIES, normalize_category
from services.dispatch.src.dispatch.core.errors import ClassifierUnavailable
from services.dispatch.src.dispatch.db.schemas import RiskAssessment

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM_PROMPT = f"""You are a civic issue classifier.

Look at the photo and return a JSON object with exactly these keys:
  "category": one of {", ".join(ALL_CATEGORIES)}
  "risk_score": integer 0-100, how dangerous the issue is to the public
  "confidence": integer 0-100, how sure you are of the category

Use "Other" when the photo shows no recognisable civic issue."""


def _clamp_score(value) -> int:
    try:
        score = round(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def parse_assessment(raw: str) -> RiskAssessment:
    """Turn the model's JSON reply into a RiskAssessment.

    Float scores are rounded and clamped to 0-100; unknown categories map
    to Other.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("classifier reply is not a JSON object")
    return RiskAssessment(
        category=normalize_category(data.get("category")),
        risk_score=_clamp_score(data.get("risk_score")),
        confidence=_clamp_score(data.get("confidence")),
    )


class OpenAIRiskClassifier:
    """Classifies an issue photo. Any failure surfaces as ClassifierUnavailable."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_s: float | None = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model_vision
        self.timeout_s = timeout_s or settings.classifier_timeout_s

    def classify(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> RiskAssessment:
        if not self.api_key:
            logger.warning("openai_api_key not set, classifier unavailable")
            raise ClassifierUnavailable("OPENAI_API_KEY not set")

        import openai

        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout_s, max_retries=0)
        encoded = base64.b64encode(image_bytes).decode("ascii")

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                            },
                        ],
                    },
                ],
                response_format={"type": "json_object"},
                temperature=0.1,
            )
            assessment = parse_assessment(response.choices[0].message.content or "")
        except openai.APITimeoutError as exc:
            raise ClassifierUnavailable("timeout") from exc
        except (openai.OpenAIError, ValueError) as exc:
            raise ClassifierUnavailable(str(exc)) from exc

        logger.info("issue_classified", extra={
            "model": self.model,
            "category": assessment.category,
            "risk_score": assessment.risk_score,
        })
        return assessment
