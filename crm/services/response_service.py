"""Response service — detect lead replies and send automated follow-ups.

Two batch jobs over leads waiting in contacted_1:

  check_responses()  Any message from the lead newer than last_contacted
                     moves them to "interested".
  run_follow_ups()   Every 6 hours (external cron). Leads quiet for
                     FOLLOW_UP_AFTER_DAYS get the canned follow-up and move
                     to contacted_2; leads that did reply move to
                     "interested" instead.

Both take a mailbox (GmailMailbox or anything with list_messages /
send_message) so the caller decides how the credential is obtained. A
failure on one lead is logged and counted; the batch carries on.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.email_log import EmailLog
from crm.models.lead import Lead
from crm.services import stage_policy

logger = logging.getLogger(__name__)

MESSAGES_PER_LEAD = 5

FOLLOW_UP_BODY = (
    "Hi {first_name},\n\n"
    "Just following up on this one and seeing if you needed any further information?\n\n"
    "Look forward to hearing from you.\n\n"
    "Thanks,\n\n"
    "{signature}"
)


def _aware(dt):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def has_responded(messages, last_contacted):
    """True if any message is strictly newer than last_contacted."""
    since = _aware(last_contacted)
    if since is None:
        return False
    return any(
        msg.get("date") is not None and _aware(msg["date"]) > since
        for msg in messages
    )


def _candidates(lead_id=None):
    query = (
        Lead.query
        .filter(Lead.stage == "contacted_1")
        .filter(Lead.archived.is_(False))
        .filter(Lead.last_contacted.isnot(None))
    )
    if lead_id:
        query = query.filter(Lead.id == lead_id)
    return query


def _lead_replied(mailbox, lead):
    messages = mailbox.list_messages(
        query=f"from:{lead.email}",
        max_results=MESSAGES_PER_LEAD,
    )
    return has_responded(messages, lead.last_contacted)


def _mark_interested(lead, reason):
    old_stage = lead.stage
    stage_policy.transition(lead, {"stage": "interested"})
    db.session.add(LeadActivity(
        lead_id=lead.id,
        activity_type="stage_change",
        description=f"Stage changed from {old_stage} to interested ({reason})",
    ))


def check_responses(mailbox, lead_id=None):
    """Advance contacted_1 leads who have replied since we last wrote.

    Args:
        mailbox: Object with list_messages(query=, max_results=).
        lead_id: Restrict the sweep to one lead.

    Returns:
        dict with checked, advanced, advanced_leads (names), errors.
    """
    leads = _candidates(lead_id).all()
    result = {"checked": len(leads), "advanced": 0, "advanced_leads": [], "errors": 0}

    for lead in leads:
        try:
            if not _lead_replied(mailbox, lead):
                continue
            _mark_interested(lead, "lead replied to email")
            db.session.commit()
            result["advanced"] += 1
            result["advanced_leads"].append(lead.name)
            logger.info(f"Lead {lead.email} replied, moved to interested")
        except Exception as e:
            db.session.rollback()
            result["errors"] += 1
            logger.error(f"Response check failed for lead {lead.id}: {e}")

    logger.info(
        f"Response sweep: checked={result['checked']} "
        f"advanced={result['advanced']} errors={result['errors']}"
    )
    return result


def follow_up_subject(lead):
    if lead.company:
        return f"Following up - {lead.company}"
    return "Following up"


def follow_up_body(lead):
    first_name = (lead.name or "").strip().split(" ")[0] or "there"
    return FOLLOW_UP_BODY.format(
        first_name=first_name,
        signature=current_app.config.get("MAIL_SIGNATURE_NAME"),
    )


def _send_follow_up(mailbox, lead, now):
    subject = follow_up_subject(lead)
    body = follow_up_body(lead)
    message_id = mailbox.send_message(
        to=lead.email,
        subject=subject,
        body=body.replace("\n", "<br>"),
    )

    stage_policy.transition(lead, {"stage": "contacted_2", "last_contacted": now})
    db.session.add(EmailLog(
        lead_id=lead.id,
        subject=subject,
        body=body,
        gmail_message_id=message_id,
        is_sent=True,
        sent_at=now,
    ))
    db.session.add(LeadActivity(
        lead_id=lead.id,
        activity_type="email",
        description=f"Automated follow-up sent: {subject}",
    ))


def run_follow_ups(mailbox, now=None):
    """Follow up with leads who have been quiet since first contact.

    Args:
        mailbox: Object with list_messages() and send_message().
        now:     Reference time (defaults to utcnow).

    Returns:
        dict with processed, follow_ups_sent, skipped_due_to_response, errors.
    """
    now = now or datetime.now(timezone.utc)
    days = current_app.config.get("FOLLOW_UP_AFTER_DAYS", 2)
    cutoff = now - timedelta(days=days)

    leads = _candidates().filter(Lead.last_contacted < cutoff).all()
    result = {
        "processed": len(leads),
        "follow_ups_sent": 0,
        "skipped_due_to_response": 0,
        "errors": 0,
    }
    logger.info(f"Follow-up job: {len(leads)} lead(s) quiet for {days}+ days")

    for lead in leads:
        try:
            if _lead_replied(mailbox, lead):
                _mark_interested(lead, "reply found before follow-up")
                db.session.commit()
                result["skipped_due_to_response"] += 1
                logger.info(f"Lead {lead.email} already replied, skipping follow-up")
                continue

            _send_follow_up(mailbox, lead, now)
            db.session.commit()
            result["follow_ups_sent"] += 1
            logger.info(f"Follow-up sent to {lead.email}")
        except Exception as e:
            db.session.rollback()
            result["errors"] += 1
            logger.error(f"Follow-up failed for lead {lead.id}: {e}")

    logger.info(
        f"Follow-up job done: sent={result['follow_ups_sent']} "
        f"responded={result['skipped_due_to_response']} errors={result['errors']}"
    )
    return result
