import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

import requests
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from ..config import settings
from ..logging_setup import log_event

DEFAULT_MODEL = "gpt-4o-mini"
FALLBACK_MODEL = "gpt-4o"
DEFAULT_MAX_RETRIES = 2
DEFAULT_RISK_THRESHOLD = 0.35
MAX_BACKOFF_MS = 2000

# USD per 1k tokens (input, output)
MODEL_PRICING = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
}

RUNWARE_URL = "https://api.runware.ai/v1"
RUNWARE_MODEL = "runware:100@1"


class GenerationError(Exception):
    pass


# --- Post prompt contract ---

class BrandVoice(BaseModel):
    tone: str = "confident and approachable"
    styleNotes: list[str] = Field(default_factory=list)


class PromptOrg(BaseModel):
    name: str
    brandVoice: BrandVoice | None = None


class PromptLocation(BaseModel):
    name: str
    address: str | None = None
    categories: list[str] = Field(default_factory=list)
    differentiators: list[str] = Field(default_factory=list)
    seasonalNotes: list[str] = Field(default_factory=list)


class PromptBrief(BaseModel):
    headlineGoal: str | None = None
    bodyGoal: str | None = None
    campaign: str | None = None
    focusKeywords: list[str] = Field(default_factory=list)


class Guardrails(BaseModel):
    bannedTerms: list[str] = Field(default_factory=list)
    requiredPhrases: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)
    blockedCategories: list[str] = Field(default_factory=list)


class ScheduleHint(BaseModel):
    targetDate: str | None = None
    targetTime: str | None = None
    cadenceHint: str | None = None


class Reference(BaseModel):
    type: Literal["review", "service", "event", "offer", "faq", "custom"] = "custom"
    title: str | None = None
    body: str


class PostPromptInput(BaseModel):
    org: PromptOrg
    location: PromptLocation
    brief: PromptBrief
    guardrails: Guardrails | None = None
    schedule: ScheduleHint | None = None
    references: list[Reference] = Field(default_factory=list)


class CallToAction(BaseModel):
    label: str
    url: str | None = None


class MediaBrief(BaseModel):
    concept: str
    altText: str | None = None
    aspectRatio: str | None = None
    safeCategories: list[str] = Field(default_factory=list)


class PostPromptOutput(BaseModel):
    headline: str = Field(min_length=10, max_length=80)
    body: str = Field(min_length=40, max_length=750)
    callToAction: CallToAction | None = None
    mediaBrief: MediaBrief | None = None
    riskScore: float = Field(default=0.2, ge=0, le=1)
    policyFindings: list[str] = Field(default_factory=list)
    supportingPoints: list[str] = Field(default_factory=list)


POST_PROMPT_NAME = "post_generation_v1"

POST_SYSTEM_PROMPT = " ".join([
    "You are LocalSpotlight, an assistant that creates Google Business Profile posts.",
    "Respect banned terms, required phrases, and regulatory guardrails.",
    "Never fabricate promotions, prices, or personal data.",
    "Keep tone on-brand, concise, and conversion oriented.",
    "If the request violates policy, raise riskScore above 0.6 and explain in policyFindings.",
])


def build_post_user_message(data: PostPromptInput) -> str:
    lines = [f"Organization: {data.org.name}", f"Location: {data.location.name}"]

    if data.location.address:
        lines.append(f"Address: {data.location.address}")
    if data.location.categories:
        lines.append(f"Categories: {', '.join(data.location.categories)}")
    if data.org.brandVoice:
        lines.append(f"Brand tone: {data.org.brandVoice.tone}")
        if data.org.brandVoice.styleNotes:
            lines.append(f"Style notes: {'; '.join(data.org.brandVoice.styleNotes)}")
    if data.brief.headlineGoal:
        lines.append(f"Headline goal: {data.brief.headlineGoal}")
    if data.brief.bodyGoal:
        lines.append(f"Body goal: {data.brief.bodyGoal}")
    if data.brief.campaign:
        lines.append(f"Campaign: {data.brief.campaign}")
    if data.brief.focusKeywords:
        lines.append(f"Focus keywords: {', '.join(data.brief.focusKeywords)}")
    if data.guardrails:
        if data.guardrails.bannedTerms:
            lines.append(f"Banned terms: {', '.join(data.guardrails.bannedTerms)}")
        if data.guardrails.requiredPhrases:
            lines.append(f"Required phrases: {', '.join(data.guardrails.requiredPhrases)}")
        if data.guardrails.disclaimers:
            lines.append(f"Disclaimers: {' | '.join(data.guardrails.disclaimers)}")
    if data.references:
        lines.append("References:")
        for i, ref in enumerate(data.references, start=1):
            lines.append(f"{i}. [{ref.type}] {ref.title or 'Untitled'} - {ref.body}")
    if data.schedule:
        hints = [
            f"target date {data.schedule.targetDate}" if data.schedule.targetDate else None,
            f"target time {data.schedule.targetTime}" if data.schedule.targetTime else None,
            data.schedule.cadenceHint,
        ]
        lines.append(f"Scheduling hint: {', '.join(h for h in hints if h)}")

    lines.append("Return valid JSON only.")
    return "\n".join(lines)


# --- Service ---

@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float | None = None


@dataclass
class GenerationResult:
    output: PostPromptOutput
    raw_text: str
    model: str
    usage: Usage | None
    risk_score: float | None
    blocked: bool
    retries: int
    prompt_name: str = POST_PROMPT_NAME
    policy_findings: list[str] = field(default_factory=list)
    meta: dict[str, Any] | None = None


def get_client():
    if not settings.openai_api_key:
        raise GenerationError("OPENAI_API_KEY is not configured. Set it in your environment before generating content.")
    return OpenAI(api_key=settings.openai_api_key, default_headers={"User-Agent": "LocalSpotlight/ai-service"})


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float | None:
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        return None
    input_price, output_price = pricing
    return round(input_tokens / 1000 * input_price + output_tokens / 1000 * output_price, 6)


class AiService:
    """
    Structured post generation with retries. The first failure switches to the
    fallback model; the output is validated against PostPromptOutput.
    """

    def __init__(self, client=None, sleep=time.sleep):
        self._client = client
        self._sleep = sleep

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def _complete(self, data: PostPromptInput, model: str) -> tuple[str, PostPromptOutput, Usage | None]:
        schema_json = json.dumps(PostPromptOutput.model_json_schema())
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": POST_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": "\n\n".join([
                        "### Task Context",
                        build_post_user_message(data),
                        "### Output Contract",
                        f"Reply with a single JSON object that matches this schema: {schema_json}",
                        "Do not include markdown fences or commentary. Respond with compact JSON.",
                    ]),
                },
            ],
            response_format={"type": "json_object"},
        )

        raw_text = response.choices[0].message.content
        if not raw_text:
            raise GenerationError(f"OpenAI returned no structured output for prompt {POST_PROMPT_NAME}")

        parsed = PostPromptOutput.model_validate(json.loads(raw_text))

        usage = None
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
            usage.cost_usd = estimate_cost(model, usage.input_tokens, usage.output_tokens)
        return raw_text, parsed, usage

    def generate(
        self,
        data: PostPromptInput | dict,
        model: str = DEFAULT_MODEL,
        fallback_model: str = FALLBACK_MODEL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        risk_threshold: float = DEFAULT_RISK_THRESHOLD,
        metadata: dict[str, Any] | None = None,
    ) -> GenerationResult:
        if isinstance(data, dict):
            data = PostPromptInput.model_validate(data)

        max_retries = max(0, max_retries)
        current_model = model
        attempt = 0

        while True:
            try:
                raw_text, parsed, usage = self._complete(data, current_model)
            except (OpenAIError, GenerationError, ValidationError, ValueError) as e:
                log_event("ai_generation_attempt_failed", level="warning", prompt=POST_PROMPT_NAME,
                          attempt=attempt, model=current_model, error=str(e))
                if attempt >= max_retries:
                    log_event("ai_generation_exhausted", level="error", prompt=POST_PROMPT_NAME, model=current_model)
                    raise GenerationError(f"AI generation failed after {attempt + 1} attempt(s): {e}") from e

                attempt += 1
                current_model = fallback_model
                self._sleep(min(MAX_BACKOFF_MS, 250 * attempt) / 1000)
                continue

            return GenerationResult(
                output=parsed,
                raw_text=raw_text,
                model=current_model,
                usage=usage,
                risk_score=parsed.riskScore,
                blocked=parsed.riskScore > risk_threshold,
                retries=attempt,
                policy_findings=list(parsed.policyFindings),
                meta=metadata,
            )


def get_ai_service() -> AiService:
    return AiService()


# --- Images ---

def generate_image(prompt_text: str, width: int = 1024, height: int = 1024) -> str:
    """Render one image with Runware and return its URL."""
    if not settings.runware_api_key:
        raise GenerationError("RUNWARE_API_KEY is not configured.")

    task = {
        "taskType": "imageInference",
        "taskUUID": str(uuid.uuid4()),
        "positivePrompt": prompt_text,
        "width": width,
        "height": height,
        "model": RUNWARE_MODEL,
        "numberResults": 1,
        "outputType": "URL",
    }
    try:
        resp = requests.post(
            RUNWARE_URL,
            headers={"Authorization": f"Bearer {settings.runware_api_key}", "Content-Type": "application/json"},
            json=[task],
            timeout=120,
        )
    except requests.RequestException as e:
        raise GenerationError(f"Image generation request failed: {e}") from e

    if resp.status_code >= 400:
        raise GenerationError(f"Image generation failed ({resp.status_code}): {resp.text}")

    body = resp.json()
    if body.get("errors"):
        raise GenerationError(f"Image generation failed: {body['errors'][0].get('message', body['errors'])}")

    for item in body.get("data") or []:
        if item.get("imageURL"):
            log_event("image_generated", task_uuid=task["taskUUID"])
            return item["imageURL"]
    raise GenerationError("Image generation returned no image URL.")
