"""Stage transition policy — the one place lead stage invariants live.

Every path that changes a lead (manual edit, response sweep, follow-up job,
Meta/Instagram webhooks, legacy stage migration) hands its requested
changes to apply_transition() and persists what comes back. That keeps two
invariants true no matter who writes:

  * archived is True exactly when the stage is a dead stage
    (not_interested, no_response, not_qualified), unless the caller sets
    archived explicitly in the same update.
  * converted_at is set when the stage becomes "converted" and cleared on
    any other stage.

Note the auto-unarchive rule: moving a lead to any live stage without
sending `archived` resets it to False, even if it was archived by hand.
"""

from datetime import datetime, timezone

from crm.models.lead import Lead


def apply_transition(changes, now=None):
    """Return the fields to persist for a requested partial update.

    Args:
        changes: Dict of requested field updates (any subset of Lead fields).
        now:     Timestamp to use for converted_at. Defaults to utcnow.

    Returns:
        A new dict. Fields other than archived/converted_at pass through.
    """
    final = dict(changes)

    if "stage" not in changes:
        return final

    stage = changes["stage"]
    now = now or datetime.now(timezone.utc)

    if "archived" not in changes:
        final["archived"] = stage in Lead.ARCHIVED_STAGES

    if stage == "converted":
        final["converted_at"] = now
    else:
        final["converted_at"] = None

    return final


def transition(lead, changes, now=None):
    """Apply the policy to `changes` and set the resulting fields on `lead`.

    Flushes nothing; the caller owns the session.

    Returns:
        The dict of fields that were written.
    """
    final = apply_transition(changes, now=now)
    for field, value in final.items():
        setattr(lead, field, value)
    return final
