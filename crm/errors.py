"""
Error taxonomy for the CRM.

Services raise these; the app factory registers one handler that turns any
CRMError into a JSON body of the form {"error": "..."} with the class's
status code.

- NotFoundError               referenced lead/record is absent (404)
- ValidationError             missing or malformed input (400)
- UpstreamUnavailableError    Gmail / Meta / OpenAI call failed (502)
- MailboxNotConnectedError    no stored Gmail credential (401)
- MailboxSessionExpiredError  credential refresh failed, reconnect needed (401)
"""


class CRMError(Exception):
    status_code = 500

    def __init__(self, message=None):
        self.message = message or "Internal server error"
        super().__init__(self.message)


class NotFoundError(CRMError):
    status_code = 404

    def __init__(self, entity_type, entity_id=None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found")


class ValidationError(CRMError):
    status_code = 400


class UpstreamUnavailableError(CRMError):
    status_code = 502


class MailboxNotConnectedError(UpstreamUnavailableError):
    status_code = 401

    def __init__(self, message=None):
        super().__init__(
            message or "Gmail not connected. Please reconnect Gmail in settings."
        )


class MailboxSessionExpiredError(UpstreamUnavailableError):
    status_code = 401

    def __init__(self, message=None):
        super().__init__(
            message or "Gmail session expired. Please reconnect Gmail in settings."
        )
