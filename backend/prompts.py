# prompts.py
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from helpers import strip_tags

JOB_POST_MAX = 6000
SKILLS_MAX = 2000
MAX_VARIANTS = 5

# rough pricing for small chat models; only feeds the spend estimate
COST_PER_TOKEN_USD = 0.0000006
OUTPUT_TOKENS_PER_VARIANT = 350

SYSTEM_PROMPT = (
    "You are AutoPitch AI. Generate concise, personalized cold outreach emails "
    "from a job post and the sender's skills. Keep each email under 180 words. "
    "Respond with a single JSON object only, no markdown, no explanation."
)


class GenerateRequest(BaseModel):
    job_post: str = Field(
        validation_alias=AliasChoices("jobPost", "job"),
        max_length=JOB_POST_MAX,
    )
    skills: str = Field(max_length=SKILLS_MAX)
    tone: str = Field(default="concise & friendly", min_length=2, max_length=60)
    cta: str = Field(
        default="short intro call this week?",
        validation_alias=AliasChoices("cta", "ctaStyle"),
        min_length=2,
        max_length=120,
    )
    variants: int = Field(default=1, ge=1, le=MAX_VARIANTS)
    turnstile_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("turnstileToken", "turnstile_token")
    )

    @field_validator("job_post", "skills", "tone", "cta", mode="before")
    @classmethod
    def _clean_text(cls, v):
        return strip_tags(v) if isinstance(v, str) else v


class BadInput(ValueError):
    def __init__(self, details: List[Dict[str, str]]):
        super().__init__("bad_input")
        self.details = details


def parse_generate_request(
    payload: Dict[str, Any], *, job_post_min: int, skills_min: int
) -> GenerateRequest:
    """Validate a /generate body; raises BadInput with per-field details."""
    try:
        req = GenerateRequest.model_validate(payload or {})
    except ValidationError as e:
        raise BadInput(
            [{"field": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()]
        )
    errors = []
    if len(req.job_post) < job_post_min:
        errors.append({"field": "jobPost", "msg": f"must be at least {job_post_min} characters"})
    if len(req.skills) < skills_min:
        errors.append({"field": "skills", "msg": f"must be at least {skills_min} characters"})
    if errors:
        raise BadInput(errors)
    return req


def build_messages(req: GenerateRequest, variants: int = 1) -> List[Dict[str, str]]:
    """Chat messages for one completion; ``variants`` completions are requested with n."""
    if variants > 1:
        ask = (
            f"This is one of {variants} distinct variants of the same pitch; "
            "pick your own angle and opening line. Write exactly 1 email."
        )
    else:
        ask = "Write exactly 1 email."
    user_prompt = (
        f"Job post:\n{req.job_post}\n\n"
        f"My skills:\n{req.skills}\n\n"
        f"Tone: {req.tone}\n"
        f"Call to action style: {req.cta}\n"
        f"Variants requested: {variants}\n\n"
        f"{ask} Return ONLY this JSON: "
        "{\"emails\": [{\"subject\": string, \"body\": string}]}"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def estimate_cost_usd(req: GenerateRequest, variants: int) -> float:
    in_tokens = math.ceil((len(req.job_post) + len(req.skills) + 300) / 4)
    out_tokens = OUTPUT_TOKENS_PER_VARIANT * variants
    return round((in_tokens + out_tokens) * COST_PER_TOKEN_USD, 6)
