"""Tool catalogue advertised through tools/list."""

from __future__ import annotations

from mcp.types import Tool

_MESSAGE_IDS = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Message IDs: Message-ID header values, or UIDs for messages without one",
}
_MAILBOX = {"type": "string", "description": "Mailbox name (default: INBOX)"}


def _schema(properties: dict | None = None, required: list[str] | None = None) -> dict:
    schema: dict = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return schema


TOOLS: list[Tool] = [
    Tool(
        name="configure_icloud",
        description="Configure iCloud email account with App Password",
        inputSchema=_schema(
            {
                "email": {"type": "string", "description": "Your iCloud email address"},
                "appPassword": {"type": "string", "description": "App-specific password for iCloud Mail"},
            },
            ["email", "appPassword"],
        ),
    ),
    Tool(
        name="get_messages",
        description="Get email messages from specified mailbox",
        inputSchema=_schema(
            {
                "mailbox": _MAILBOX,
                "limit": {"type": "number", "description": "Maximum number of messages to retrieve", "default": 10},
                "unreadOnly": {"type": "boolean", "description": "Retrieve only unread messages", "default": False},
            }
        ),
    ),
    Tool(
        name="send_email",
        description="Send an email through iCloud Mail",
        inputSchema=_schema(
            {
                "to": {
                    "oneOf": [
                        {"type": "string"},
                        {"type": "array", "items": {"type": "string"}},
                    ],
                    "description": "Recipient email address(es)",
                },
                "subject": {"type": "string", "description": "Email subject"},
                "text": {"type": "string", "description": "Plain text email body"},
                "html": {"type": "string", "description": "HTML email body"},
            },
            ["to", "subject"],
        ),
    ),
    Tool(
        name="mark_as_read",
        description="Mark email messages as read",
        inputSchema=_schema({"messageIds": _MESSAGE_IDS, "mailbox": _MAILBOX}, ["messageIds"]),
    ),
    Tool(
        name="get_mailboxes",
        description="List all available mailboxes",
        inputSchema=_schema(),
    ),
    Tool(
        name="test_connection",
        description="Test the email server connection (IMAP and SMTP)",
        inputSchema=_schema(),
    ),
    Tool(
        name="create_mailbox",
        description="Create a new mailbox (folder)",
        inputSchema=_schema(
            {"name": {"type": "string", "description": "Name of the mailbox to create"}},
            ["name"],
        ),
    ),
    Tool(
        name="delete_mailbox",
        description="Delete a mailbox (folder). System mailboxes cannot be deleted",
        inputSchema=_schema(
            {"name": {"type": "string", "description": "Name of the mailbox to delete"}},
            ["name"],
        ),
    ),
    Tool(
        name="move_messages",
        description="Move messages from one mailbox to another",
        inputSchema=_schema(
            {
                "messageIds": _MESSAGE_IDS,
                "sourceMailbox": {"type": "string", "description": "Mailbox the messages are in"},
                "destinationMailbox": {"type": "string", "description": "Mailbox to move them to"},
            },
            ["messageIds", "sourceMailbox", "destinationMailbox"],
        ),
    ),
    Tool(
        name="search_messages",
        description="Search messages by text, sender, date range and read state",
        inputSchema=_schema(
            {
                "query": {"type": "string", "description": "Text to look for in subject or body"},
                "mailbox": _MAILBOX,
                "limit": {"type": "number", "description": "Maximum number of messages to return", "default": 10},
                "dateFrom": {"type": "string", "description": "Only messages on or after this ISO date"},
                "dateTo": {"type": "string", "description": "Only messages before this ISO date"},
                "fromEmail": {"type": "string", "description": "Only messages from this sender"},
                "unreadOnly": {"type": "boolean", "description": "Only unread messages", "default": False},
            }
        ),
    ),
    Tool(
        name="delete_messages",
        description="Permanently delete messages from a mailbox",
        inputSchema=_schema({"messageIds": _MESSAGE_IDS, "mailbox": _MAILBOX}, ["messageIds"]),
    ),
    Tool(
        name="set_flags",
        description="Add or remove IMAP flags (e.g. \\Flagged, \\Seen) on messages",
        inputSchema=_schema(
            {
                "messageIds": _MESSAGE_IDS,
                "flags": {"type": "array", "items": {"type": "string"}, "description": "Flags to add or remove"},
                "mailbox": _MAILBOX,
                "action": {"type": "string", "enum": ["add", "remove"], "default": "add"},
            },
            ["messageIds", "flags"],
        ),
    ),
    Tool(
        name="download_attachment",
        description="Download one attachment of a message as base64",
        inputSchema=_schema(
            {
                "messageId": {"type": "string", "description": "Message ID the attachment belongs to"},
                "attachmentIndex": {"type": "number", "description": "Zero-based attachment index", "default": 0},
                "mailbox": _MAILBOX,
            },
            ["messageId"],
        ),
    ),
    Tool(
        name="auto_organize",
        description="Move messages into mailboxes according to sender/subject rules",
        inputSchema=_schema(
            {
                "rules": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "condition": {
                                "type": "object",
                                "properties": {
                                    "fromContains": {"type": "string"},
                                    "subjectContains": {"type": "string"},
                                },
                            },
                            "action": {
                                "type": "object",
                                "properties": {"moveToMailbox": {"type": "string"}},
                                "required": ["moveToMailbox"],
                            },
                        },
                        "required": ["name", "condition", "action"],
                    },
                },
                "sourceMailbox": {"type": "string", "description": "Mailbox to organize (default: INBOX)"},
                "dryRun": {"type": "boolean", "description": "Report matches without moving", "default": False},
            },
            ["rules"],
        ),
    ),
    Tool(
        name="check_config",
        description="Show the current (masked) configuration and connection state",
        inputSchema=_schema(),
    ),
]

TOOL_NAMES = frozenset(t.name for t in TOOLS)
