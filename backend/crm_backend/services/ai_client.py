"""Text-completion client for campaign copy and customer insights (Cohere)."""

from __future__ import annotations

import json
from typing import Any

import anyio
import requests
from loguru import logger

from crm_backend.core.concurrency import run_in_thread_limited
from crm_backend.core.config import settings
from crm_backend.core.errors import ExternalServiceError
from crm_backend.schemas.segment import RuleSet

INSIGHTS_SAMPLE_SIZE = 50


def _cohere_generate(prompt: str, max_tokens: int, temperature: float) -> str:
    headers = {
        "Authorization": f"Bearer {settings.COHERE_API_KEY}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    payload = {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature}
    resp = requests.post(
        settings.COHERE_API_URL, json=payload, headers=headers, timeout=settings.AI_TIMEOUT_SEC
    )
    resp.raise_for_status()
    generations = resp.json().get("generations") or []
    if not generations:
        raise ExternalServiceError("AI provider returned no text")
    return generations[0].get("text", "")


async def generate_text(prompt: str, *, max_tokens: int, temperature: float) -> str:
    if not settings.COHERE_API_KEY:
        raise ExternalServiceError("AI provider is not configured")
    try:
        with anyio.fail_after(settings.AI_TIMEOUT_SEC):
            return await run_in_thread_limited(_cohere_generate, prompt, max_tokens, temperature)
    except TimeoutError as exc:
        logger.bind(timeout=settings.AI_TIMEOUT_SEC).warning("ai_generation_timeout")
        raise ExternalServiceError("AI text generation timed out") from exc
    except requests.RequestException as exc:
        logger.bind(error=str(exc)).warning("ai_generation_failed")
        raise ExternalServiceError(f"AI content generation failed: {exc}") from exc


def campaign_content_prompt(rule_set: RuleSet) -> str:
    rules = [rule.model_dump(mode="json", exclude_none=True) for rule in rule_set.rules]
    return (
        f"Generate an email subject and body for customers matching: {json.dumps(rules)}.\n"
        "Include variables like {name} and {total_spent}.\n"
        "Format as:\nSubject: [subject here]\nBody: [body here]"
    )


def customer_insights_prompt(customer_data: list[Any]) -> str:
    sample = json.dumps(customer_data[:INSIGHTS_SAMPLE_SIZE], default=str)
    return (
        f"Analyze this customer data and provide marketing insights: {sample}.\n"
        "Highlight:\n1. Top spending segments\n2. Purchase frequency trends\n"
        "3. Recommended campaign types"
    )


async def generate_campaign_content(rule_set: RuleSet) -> str:
    return await generate_text(campaign_content_prompt(rule_set), max_tokens=300, temperature=0.7)


async def generate_customer_insights(customer_data: list[Any]) -> str:
    return await generate_text(
        customer_insights_prompt(customer_data), max_tokens=500, temperature=0.5
    )
