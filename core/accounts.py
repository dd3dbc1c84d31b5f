"""Account resolution for the swarm.

Turns a requested bot count plus an optional list of raw account lines into
a sequence of :class:`Credential` objects.  Without an account list every
bot gets a generated offline name (``Bot0``, ``Bot1`` ...).  With a list,
each line is ``username`` or ``username:password``; anything else falls
back to the generated name so one bad line never stops a run.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Login pair for one bot.

    An empty ``password`` means the bot authenticates offline.
    """

    username: str
    password: str = ""

    @property
    def offline(self) -> bool:
        return not self.password


def format_username(template: str, index: int) -> str:
    """Render a generated username for slot *index*.

    ``%``-style templates (``"Bot%d"``) and ``{}``-style templates
    (``"Bot{}"``) are both accepted.  A template without any placeholder
    gets the index appended.
    """
    if "%" in template:
        try:
            return template % index
        except (TypeError, ValueError):
            pass
    if "{" in template:
        try:
            return template.format(index)
        except (IndexError, KeyError, ValueError):
            pass
    return f"{template}{index}"


def parse_account_line(line: str, index: int, name_format: str) -> Credential:
    """Parse one raw account line.

    Args:
        line: ``username`` or ``username:password``.
        index: Slot index, used for the generated fallback name.
        name_format: Template for the fallback name.

    Returns:
        The parsed credential.  Lines with more than two fields fall back
        to the generated name with an empty password.
    """
    fields = line.strip().split(":")

    if len(fields) == 1:
        return Credential(fields[0] or format_username(name_format, index))
    if len(fields) == 2:
        username, password = fields
        return Credential(username or format_username(name_format, index), password)

    logger.debug("Malformed account line at index %d, using generated name", index)
    return Credential(format_username(name_format, index))


class CredentialResolver:
    """Lazy sequence of up to ``amount`` credentials.

    Iterating stops early when the account list runs out.  After that,
    :attr:`truncated` is ``True`` and :attr:`available` holds the number of
    credentials that could be produced; the caller decides how to report it.
    """

    def __init__(
        self,
        amount: int,
        accounts: Optional[Sequence[str]] = None,
        name_format: str = "Bot%d",
    ) -> None:
        self.amount = amount
        self.accounts = accounts
        self.name_format = name_format
        self.truncated = False
        self.available = amount

    def __iter__(self) -> Iterator[Credential]:
        for i in range(self.amount):
            if self.accounts is None:
                yield Credential(format_username(self.name_format, i))
                continue

            if i >= len(self.accounts):
                self.truncated = True
                self.available = len(self.accounts)
                return

            yield parse_account_line(self.accounts[i], i, self.name_format)


def load_accounts_file(path: str) -> List[str]:
    """Read raw account lines from *path*.

    Blank lines and ``#`` comments are skipped.  A missing file is
    reported and treated as an empty list.
    """
    if not os.path.exists(path):
        logger.warning("Account file not found: %s", path)
        return []

    with open(path, "r", encoding="utf-8") as fh:
        lines = [line.strip() for line in fh]

    accounts = [line for line in lines if line and not line.startswith("#")]
    logger.info("Loaded %d accounts from %s", len(accounts), path)
    return accounts
