"""Folder taxonomy: classify provider folders into canonical types and derive sync policy.

Classification is a case-insensitive exact lookup: the provider role hint
first (Graph well-known name, Gmail system label, IMAP special-use flag),
then the folder's display name (IMAP paths reduced to their leaf) against
a fixed alias dictionary. No fuzzy matching; unmatched names are CUSTOM.
The same input always yields the same output.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from mailsync.application.dtos.sync import FolderPolicy, ProviderFolder
from mailsync.domain.enums import EmailCategory, FolderType

_FOLDER_ALIASES: dict[FolderType, tuple[str, ...]] = {
    FolderType.INBOX: (
        "inbox", "in box",
        "bandeja de entrada", "entrada",
        "boîte de réception", "réception",
        "posteingang", "eingang",
        "posta in arrivo", "arrivo",
        "caixa de entrada",
        "postvak in",
    ),
    FolderType.SENT: (
        "sent", "sent items", "sent mail", "sent messages", "sent folder",
        "sentitems", "sent email", "outgoing",
        "enviados", "elementos enviados", "correo enviado",
        "envoyés", "éléments envoyés", "messages envoyés",
        "gesendet", "gesendete elemente",
        "posta inviata", "inviati", "elementi inviati",
        "itens enviados", "enviadas",
        "verzonden", "verzonden items",
    ),
    FolderType.DRAFTS: (
        "drafts", "draft", "draft messages",
        "borradores",
        "brouillons",
        "entwürfe",
        "bozze",
        "rascunhos",
        "concepten",
    ),
    FolderType.TRASH: (
        "trash", "deleted items", "deleted", "bin", "recycle bin",
        "deleted messages", "deleted emails", "deleteditems", "rubbish",
        "papelera", "elementos eliminados", "eliminados",
        "corbeille", "éléments supprimés", "supprimés",
        "papierkorb", "gelöschte elemente", "gelöscht",
        "cestino", "posta eliminata", "eliminati",
        "lixeira", "itens excluídos", "excluídos",
        "prullenbak", "verwijderde items",
    ),
    FolderType.SPAM: (
        "spam", "junk", "junk email", "junk e-mail", "junk mail", "junkemail",
        "bulk mail", "quarantine",
        "correo no deseado", "no deseado",
        "courrier indésirable", "indésirables",
        "junk-e-mail",
        "posta indesiderata",
        "lixo eletrônico",
        "ongewenste e-mail",
    ),
    FolderType.ARCHIVE: (
        "archive", "archives", "archived", "all mail", "all",
        "archivo", "archivos",
        "archiv",
        "archivio",
        "arquivo",
        "archief",
    ),
    FolderType.STARRED: (
        "starred", "flagged", "favorites", "favourites",
        "destacados", "con estrella",
        "suivis",
        "markiert",
        "speciali",
        "com estrela",
        "met ster",
    ),
    FolderType.IMPORTANT: (
        "important", "priority", "high priority",
        "importante", "importantes",
        "wichtig",
        "belangrijk",
    ),
}

# Provider role hints, already lowercased.
_ROLE_HINTS: dict[str, FolderType] = {
    # Microsoft Graph well-known folder names
    "inbox": FolderType.INBOX,
    "sentitems": FolderType.SENT,
    "drafts": FolderType.DRAFTS,
    "deleteditems": FolderType.TRASH,
    "junkemail": FolderType.SPAM,
    "archive": FolderType.ARCHIVE,
    # Gmail system labels
    "sent": FolderType.SENT,
    "draft": FolderType.DRAFTS,
    "trash": FolderType.TRASH,
    "spam": FolderType.SPAM,
    "starred": FolderType.STARRED,
    "important": FolderType.IMPORTANT,
    # IMAP special-use flags (RFC 6154)
    "\\sent": FolderType.SENT,
    "\\drafts": FolderType.DRAFTS,
    "\\trash": FolderType.TRASH,
    "\\junk": FolderType.SPAM,
    "\\archive": FolderType.ARCHIVE,
    "\\all": FolderType.ARCHIVE,
    "\\flagged": FolderType.STARRED,
    "\\important": FolderType.IMPORTANT,
}

_NAME_LOOKUP: dict[str, FolderType] = {
    alias: folder_type
    for folder_type, aliases in _FOLDER_ALIASES.items()
    for alias in aliases
}

SYSTEM_FOLDER_TYPES = frozenset({
    FolderType.INBOX,
    FolderType.SENT,
    FolderType.DRAFTS,
    FolderType.TRASH,
    FolderType.SPAM,
    FolderType.ARCHIVE,
})

# Folders that only show messages stored elsewhere.
AGGREGATE_VIEW_TYPES = frozenset({FolderType.STARRED, FolderType.IMPORTANT})
_AGGREGATE_ROLE_HINTS = frozenset({"\\all", "\\flagged", "\\important", "starred", "important"})
_AGGREGATE_NAMES = frozenset({"all mail", "all"})

CRITICAL_FOLDER_TYPES = (
    FolderType.INBOX,
    FolderType.SENT,
    FolderType.DRAFTS,
    FolderType.TRASH,
    FolderType.SPAM,
)

_ICONS: dict[FolderType, str] = {
    FolderType.INBOX: "inbox",
    FolderType.SENT: "send",
    FolderType.DRAFTS: "draft",
    FolderType.TRASH: "delete",
    FolderType.SPAM: "report",
    FolderType.ARCHIVE: "archive",
    FolderType.STARRED: "star",
    FolderType.IMPORTANT: "priority_high",
    FolderType.CUSTOM: "folder",
}

_SORT_ORDER: dict[FolderType, int] = {
    FolderType.INBOX: 1,
    FolderType.STARRED: 2,
    FolderType.IMPORTANT: 3,
    FolderType.SENT: 4,
    FolderType.DRAFTS: 5,
    FolderType.ARCHIVE: 6,
    FolderType.CUSTOM: 50,
    FolderType.SPAM: 98,
    FolderType.TRASH: 99,
}

# Minutes between syncs; custom folders sync less often than system ones.
_SYNC_FREQUENCY_MINUTES: dict[FolderType, int] = {
    FolderType.INBOX: 5,
    FolderType.DRAFTS: 10,
    FolderType.IMPORTANT: 10,
    FolderType.STARRED: 15,
    FolderType.SENT: 15,
    FolderType.SPAM: 30,
    FolderType.CUSTOM: 30,
    FolderType.TRASH: 60,
    FolderType.ARCHIVE: 60,
}

_SYNC_DAYS_BACK: dict[FolderType, int] = {
    FolderType.INBOX: 30,
    FolderType.SENT: 30,
    FolderType.DRAFTS: 365,
    FolderType.STARRED: 365,
    FolderType.IMPORTANT: 90,
    FolderType.ARCHIVE: 90,
    FolderType.CUSTOM: 30,
    FolderType.TRASH: 7,
    FolderType.SPAM: 7,
}

_CATEGORY_BY_TYPE: dict[FolderType, EmailCategory] = {
    FolderType.INBOX: EmailCategory.INBOX,
    FolderType.SENT: EmailCategory.SENT,
    FolderType.DRAFTS: EmailCategory.DRAFTS,
    FolderType.SPAM: EmailCategory.JUNK,
    FolderType.TRASH: EmailCategory.DELETED,
    FolderType.ARCHIVE: EmailCategory.DELETED,
}

_OUTBOX_NAMES = frozenset({"outbox", "out box", "sending", "enviando"})

_DISPLAY_SLUGS: dict[str, str] = {
    "inbox": "inbox",
    "sent items": "sent",
    "drafts": "drafts",
    "deleted items": "trash",
    "junk email": "spam",
    "archive": "archive",
}


def folder_leaf(name: str) -> str:
    """Return the last path segment of an IMAP-style folder path.

    '[Gmail]/Sent Mail' -> 'Sent Mail', 'INBOX.Trash' -> 'Trash'. A bare
    'INBOX' is returned unchanged.
    """
    stripped = name.strip()
    for separator in ("/", "."):
        if separator in stripped:
            leaf = stripped.rsplit(separator, 1)[-1].strip()
            if leaf:
                stripped = leaf
    return stripped


def detect_folder_type(name: str, role_hint: str | None = None) -> FolderType:
    """Classify a folder. Role hint wins over the name; unmatched names are CUSTOM."""
    if role_hint:
        hinted = _ROLE_HINTS.get(role_hint.strip().lower())
        if hinted is not None:
            return hinted
    lowered = name.strip().lower()
    if lowered in _NAME_LOOKUP:
        return _NAME_LOOKUP[lowered]
    return _NAME_LOOKUP.get(folder_leaf(name).lower(), FolderType.CUSTOM)


def is_system_folder(folder_type: FolderType) -> bool:
    """Return True for the folder types every mailbox is expected to have."""
    return folder_type in SYSTEM_FOLDER_TYPES


def icon_for(folder_type: FolderType) -> str:
    return _ICONS[folder_type]


def sort_order_for(folder_type: FolderType) -> int:
    return _SORT_ORDER[folder_type]


def should_sync_by_default(folder_type: FolderType) -> bool:
    """Trash, spam and the starred/important views are off unless the user opts in."""
    if folder_type in AGGREGATE_VIEW_TYPES:
        return False
    return folder_type not in (FolderType.TRASH, FolderType.SPAM)


def is_aggregate_view(
    folder_type: FolderType | str, name: str, role_hint: str | None = None
) -> bool:
    """True for folders listing messages that belong to other folders.

    Starred and important views, and the IMAP \\All mailbox (Gmail's "All Mail").
    """
    if FolderType(folder_type) in AGGREGATE_VIEW_TYPES:
        return True
    if role_hint and role_hint.strip().lower() in _AGGREGATE_ROLE_HINTS:
        return True
    return folder_leaf(name).lower() in _AGGREGATE_NAMES


def policy_for(folder_type: FolderType) -> FolderPolicy:
    """Return the default classification-derived policy for a folder type."""
    return FolderPolicy(
        folder_type=folder_type,
        is_system=is_system_folder(folder_type),
        icon=_ICONS[folder_type],
        sort_order=_SORT_ORDER[folder_type],
        sync_enabled=should_sync_by_default(folder_type),
        sync_frequency_minutes=_SYNC_FREQUENCY_MINUTES[folder_type],
        sync_days_back=_SYNC_DAYS_BACK[folder_type],
    )


def classify_folder(folder: ProviderFolder) -> FolderPolicy:
    """Classify a provider folder and return its default policy."""
    folder_type = detect_folder_type(folder.name, folder.role_hint)
    policy = policy_for(folder_type)
    if policy.sync_enabled and is_aggregate_view(folder_type, folder.name, folder.role_hint):
        return replace(policy, sync_enabled=False)
    return policy


def category_for_folder(folder_type: FolderType | str, folder_name: str | None = None) -> EmailCategory:
    """Map a folder's canonical type to the email category stored on its messages.

    Outbox has no canonical folder type, so it is recognized by name.
    Unrecognized folders default to INBOX.
    """
    if folder_name and folder_leaf(folder_name).lower() in _OUTBOX_NAMES:
        return EmailCategory.OUTBOX
    return _CATEGORY_BY_TYPE.get(FolderType(folder_type), EmailCategory.INBOX)


def normalize_folder_name(name: str) -> str:
    """Return a URL-friendly slug for a folder display name ('Sent Items' -> 'sent')."""
    lowered = name.strip().lower()
    if lowered in _DISPLAY_SLUGS:
        return _DISPLAY_SLUGS[lowered]
    return "-".join(lowered.split())


@dataclass
class FolderStructureReport:
    """Result of validate_folder_structure."""

    is_valid: bool
    found: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_folder_structure(folders: list[ProviderFolder]) -> FolderStructureReport:
    """Check a folder listing for the critical system folders.

    Only a missing inbox makes the structure invalid; other missing critical
    folders are reported as warnings.
    """
    found: dict[str, str] = {}
    for folder in folders:
        folder_type = detect_folder_type(folder.name, folder.role_hint)
        if folder_type in CRITICAL_FOLDER_TYPES and folder_type.value not in found:
            found[folder_type.value] = folder.name
    missing = [t.value for t in CRITICAL_FOLDER_TYPES if t.value not in found]
    warnings = [
        f"Missing {folder_type} folder" for folder_type in missing if folder_type != "inbox"
    ]
    return FolderStructureReport(
        is_valid=FolderType.INBOX.value in found,
        found=found,
        missing=missing,
        warnings=warnings,
    )
