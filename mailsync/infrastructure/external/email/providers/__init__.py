"""Provider adapters: Microsoft Graph, Gmail and IMAP."""

from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailsync.infrastructure.external.email.providers.imap_provider import IMAPProvider
from mailsync.infrastructure.external.email.providers.outlook_provider import OutlookProvider

__all__ = ["GmailProvider", "IMAPProvider", "OutlookProvider"]
