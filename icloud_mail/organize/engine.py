"""Auto-organize: apply caller rules to a mailbox and move what matches."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from icloud_mail.mail.types import DEFAULT_MAILBOX, NormalizedMessage, OperationResult
from icloud_mail.organize.rules import InvalidRuleError, OrganizationRule

logger = logging.getLogger(__name__)

#: How many of the most recent messages one organize pass looks at.
ORGANIZE_SCAN_LIMIT = 100


class _Fetcher(Protocol):
    async def get_messages(
        self, mailbox: str = ..., limit: int = ..., unread_only: bool = ...
    ) -> list[NormalizedMessage]: ...


class _Mover(Protocol):
    async def move_messages(
        self, message_ids: list[str], source_mailbox: str, destination_mailbox: str
    ) -> OperationResult: ...


class AutoOrganizer:
    """Evaluates every rule against the same fetched batch.

    Rules are independent: a message may match several, and each rule's
    matches are moved on their own.  Messages are addressed by Message-ID or
    UID, so one rule's move never shifts the targets of the next.  A message
    an earlier rule already moved is no longer in the source mailbox; the
    later rule's move reports it under ``notFound``, and if none of that
    rule's matches remain the rule reports ``moved: false``.

    Usage::

        organizer = AutoOrganizer(fetcher, operations)
        result = await organizer.run(rules, "INBOX", dry_run=True)
    """

    def __init__(self, fetcher: _Fetcher, mover: _Mover) -> None:
        self._fetcher = fetcher
        self._mover = mover

    async def run(
        self,
        raw_rules: list[Any],
        source_mailbox: str = DEFAULT_MAILBOX,
        dry_run: bool = False,
    ) -> OperationResult:
        try:
            rules = [OrganizationRule.from_dict(r) for r in raw_rules]
        except InvalidRuleError as exc:
            return OperationResult.error(f"Invalid organization rule: {exc}", results=[])

        try:
            messages = await self._fetcher.get_messages(source_mailbox, ORGANIZE_SCAN_LIMIT)
        except Exception as exc:  # noqa: BLE001
            logger.error("Organize fetch from %s failed: %s", source_mailbox, exc)
            return OperationResult.error(f"Failed to organize emails: {exc}", results=[])

        results = []
        total_matched = 0
        for rule in rules:
            record = await self._apply(rule, messages, source_mailbox, dry_run)
            total_matched += record["matchedMessages"]
            results.append(record)

        if dry_run:
            summary = f"Dry run completed. Found {total_matched} messages matching organization rules"
        else:
            summary = f"Organization completed. Processed {total_matched} messages"
        logger.info(summary)
        return OperationResult.success(summary, results=results)

    async def _apply(
        self,
        rule: OrganizationRule,
        messages: list[NormalizedMessage],
        source_mailbox: str,
        dry_run: bool,
    ) -> dict[str, Any]:
        matched = [m for m in messages if rule.matches(m)]
        record: dict[str, Any] = {
            "rule": rule.name,
            "matchedMessages": len(matched),
            "moved": False,
        }
        if not matched:
            return record

        destination = rule.action.move_to_mailbox
        record["messages"] = [
            {
                "id": m.id,
                "from": m.sender,
                "subject": m.subject,
                "destinationMailbox": destination,
            }
            for m in matched
        ]
        if dry_run:
            return record

        try:
            outcome = await self._mover.move_messages(
                [m.id for m in matched], source_mailbox, destination
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Rule %r: move to %s raised: %s", rule.name, destination, exc)
            return record

        if outcome.ok:
            record["moved"] = True
        else:
            logger.warning("Rule %r: move to %s failed: %s", rule.name, destination, outcome.message)
        return record
