"""AI service — draft email replies with an OpenAI chat model.

The system prompt carries the business context saved in settings (free-text
notes plus any uploaded documents); the user prompt carries the email being
answered, the requested tone, and optional extra instructions.
"""

import logging

import openai
from flask import current_app
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crm.errors import UpstreamUnavailableError, ValidationError
from crm.extensions import db
from crm.models.business_context import BusinessContext

logger = logging.getLogger(__name__)

REPLY_TYPES = ("professional", "friendly", "brief")

# Transient failures only; auth and bad-request errors fail immediately.
RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
)


def get_business_context():
    """Return the saved BusinessContext row, or None."""
    return BusinessContext.query.filter_by(user_id=BusinessContext.DEFAULT_USER_ID).first()


def save_business_context(notes, attachments=None):
    """Create or replace the business context used in every draft."""
    if attachments is not None and not isinstance(attachments, list):
        raise ValidationError("attachments must be a list")

    context = get_business_context()
    if context is None:
        context = BusinessContext(user_id=BusinessContext.DEFAULT_USER_ID)
        db.session.add(context)
    context.notes = notes or ""
    context.attachments = attachments or []
    db.session.commit()
    return context


def build_system_prompt(notes="", attachments=None):
    business = current_app.config.get("BUSINESS_NAME")
    signature = current_app.config.get("MAIL_SIGNATURE_NAME")

    prompt = (
        f"You are an email assistant for {business}, a professional media and "
        "marketing company. Your task is to draft helpful, professional email replies.\n\n"
        "Key guidelines:\n"
        "- Be professional but personable\n"
        "- Keep responses concise and to the point\n"
        "- Address the sender's questions or concerns directly\n"
        f'- Sign off with "Thanks," followed by a blank line, then "{signature}" on its own line\n'
        "- Do NOT include a subject line - only write the email body\n"
        f'- Do NOT use placeholder text like [Your Name] - use "{signature}" as the sender\n'
    )

    if notes:
        prompt += (
            "\nIMPORTANT BUSINESS CONTEXT - Use this information to craft relevant responses:\n"
            f"{notes}\n"
        )

    if attachments:
        prompt += "\nADDITIONAL BUSINESS DOCUMENTS:\n"
        for attachment in attachments:
            prompt += f"--- {attachment.get('name')} ---\n{attachment.get('content', '')}\n\n"

    return prompt


def build_user_prompt(email, reply_type="professional", custom_prompt=None):
    prompt = (
        f"Please draft a {reply_type} reply to this email:\n\n"
        f"From: {email.get('from', '')} <{email.get('from_email', '')}>\n"
        f"Subject: {email.get('subject', '')}\n"
        f"Message:\n{email.get('body', '')}\n\n"
    )
    if custom_prompt:
        prompt += f"ADDITIONAL INSTRUCTIONS FROM USER:\n{custom_prompt}\n\n"
    prompt += "Write only the email body text, nothing else:"
    return prompt


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    reraise=True,
)
def complete(system_prompt, user_prompt):
    """One chat completion. Transient errors are retried up to 3 times."""
    client = openai.OpenAI(api_key=current_app.config.get("OPENAI_API_KEY"))
    response = client.chat.completions.create(
        model=current_app.config.get("OPENAI_MODEL"),
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=0.7,
        max_tokens=1000,
    )
    return response.choices[0].message.content or ""


def draft_reply(email, reply_type="professional", custom_prompt=None):
    """Draft a reply to `email` ({from, from_email, subject, body}).

    Raises:
        ValidationError:          Missing email body or unknown reply type.
        UpstreamUnavailableError: No API key, or the model call failed.
    """
    if not isinstance(email, dict) or not email.get("body"):
        raise ValidationError("Email content is required")
    if reply_type not in REPLY_TYPES:
        raise ValidationError(
            f"Invalid reply_type '{reply_type}'. Must be one of: {', '.join(REPLY_TYPES)}"
        )
    if not current_app.config.get("OPENAI_API_KEY"):
        raise UpstreamUnavailableError(
            "OpenAI API key not configured. Please add OPENAI_API_KEY to your environment variables."
        )

    context = get_business_context()
    system_prompt = build_system_prompt(
        notes=context.notes if context else "",
        attachments=context.attachments if context else None,
    )
    user_prompt = build_user_prompt(email, reply_type, custom_prompt)

    logger.info(f"Drafting {reply_type} reply to {email.get('from_email')}")
    try:
        text = complete(system_prompt, user_prompt)
    except Exception as e:
        logger.error(f"AI draft failed: {e}")
        raise UpstreamUnavailableError(f"Failed to generate draft: {e}")

    if not text.strip():
        raise UpstreamUnavailableError("Failed to generate response")
    return text.strip()
