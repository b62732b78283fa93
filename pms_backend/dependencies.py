"""
Service wiring for the FastAPI app.

``ServiceContainer`` builds the code stores, flows and services once per
application and hands the same instances to every request. Collaborators can
be injected, which is how the tests swap Firebase and SMTP for fakes.
"""
import hmac
import logging
import time
from typing import Any, Callable, Optional

from fastapi import Header, HTTPException, Request

from .config import Settings
from .exceptions import UnauthorizedError
from .schemas.api_response import error_payload
from .services.account_service import AccountService
from .services.code_flows import (
    CodeIssuanceFlow,
    CodeVerificationFlow,
    otp_settings,
    signup_approval_settings,
)
from .services.code_store import ALPHANUMERIC, NUMERIC, VerificationCodeStore
from .services.document_store import DocumentStore, FirestoreDocumentStore
from .services.identity_provider import FirebaseIdentityProvider, IdentityProvider
from .services.mail_delivery_service import MailDeliveryService, Mailer
from .services.role_service import RoleService


logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        identity: Optional[IdentityProvider] = None,
        documents: Optional[DocumentStore] = None,
        mailer: Optional[Mailer] = None,
        clock: Callable[[], float] = time.time,
        random_source: Optional[Any] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.identity = identity or FirebaseIdentityProvider()
        self.documents = documents or FirestoreDocumentStore()
        self.mailer = mailer or MailDeliveryService()

        self.otp_store = VerificationCodeStore(
            ttl_seconds=self.settings.otp_ttl_seconds,
            alphabet=NUMERIC,
            clock=clock,
            random_source=random_source,
        )
        self.signup_store = VerificationCodeStore(
            ttl_seconds=self.settings.signup_code_ttl_seconds,
            alphabet=ALPHANUMERIC,
            clock=clock,
            random_source=random_source,
        )

        self.accounts = AccountService(self.identity, self.documents, self.settings)
        self.roles = RoleService(self.identity, self.documents, self.settings)

        otp_flow_settings = otp_settings(self.settings.otp_ttl_seconds)
        self.otp_issuance = CodeIssuanceFlow(self.otp_store, self.mailer, otp_flow_settings)
        self.otp_verification = CodeVerificationFlow(self.otp_store, otp_flow_settings)

        signup_flow_settings = signup_approval_settings(self.settings.admin_notification_email)
        self.signup_issuance = CodeIssuanceFlow(self.signup_store, self.mailer, signup_flow_settings)
        self.signup_verification = CodeVerificationFlow(
            self.signup_store,
            signup_flow_settings,
            on_verified=self.accounts.provision_approved_signup,
        )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def require_admin_key(
    request: Request,
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
) -> None:
    """Reject admin calls without the shared key, when a key is configured."""
    required_key = get_container(request).settings.admin_api_key
    if not required_key:
        return
    if x_admin_key and hmac.compare_digest(x_admin_key.encode(), required_key.encode()):
        return
    logger.warning("Rejected admin request to %s: bad or missing x-admin-key", request.url.path)
    exc = UnauthorizedError()
    raise HTTPException(status_code=exc.status_code, detail=error_payload(message=exc.message))
