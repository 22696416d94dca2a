"""Category resolution and rule application."""

import logging
import re
from dataclasses import dataclass

from spendflow.db.models import MatchType, Rule, Transaction
from spendflow.db.repository import Repository
from spendflow.errors import InvalidRequestError

log = logging.getLogger("spendflow.rules")

UNCATEGORIZED = "UNCATEGORIZED"
MAX_RULE_CANDIDATES = 500


@dataclass
class RuleMatch:
    """Result of a rule matching a transaction."""

    rule: Rule
    matched_text: str
    category: str


@dataclass
class Resolution:
    """Effective category of a transaction and where it came from.

    ``source`` is one of ``override``, ``rule``, ``provider`` or ``default``.
    """

    category: str
    source: str
    rule_id: int | None = None


def match_texts(txn: Transaction) -> list[str]:
    """Fields a rule pattern is checked against, in order."""
    return [t for t in (txn.merchant_name, txn.name, txn.original_description) if t]


class CategoryResolver:
    """Computes the effective category of a transaction.

    Precedence: explicit override, then the newest matching regex rule, then
    the provider's primary category, then ``UNCATEGORIZED``. Contains-rules
    take part only through the overrides they wrote when applied.
    """

    def __init__(self, rules: list[Rule] | None = None):
        self._rules: list[Rule] = []
        self._compiled_patterns: dict[int, re.Pattern | None] = {}
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: Rule) -> None:
        """Add a rule to the resolver. Non-regex rules are ignored."""
        if rule.match_type != MatchType.REGEX:
            return
        try:
            self._compiled_patterns[rule.id] = re.compile(rule.pattern)
        except re.error:
            log.warning(f"Ignoring rule {rule.id}: invalid pattern {rule.pattern!r}")
            self._compiled_patterns[rule.id] = None
        self._rules.append(rule)
        self._rules.sort(key=lambda r: r.id or 0, reverse=True)

    @property
    def rules(self) -> list[Rule]:
        """Get regex rules, newest first."""
        return self._rules.copy()

    def find_match(self, txn: Transaction) -> RuleMatch | None:
        """Find the newest regex rule matching the transaction."""
        texts = match_texts(txn)
        for rule in self._rules:
            compiled = self._compiled_patterns.get(rule.id)
            if compiled is None:
                continue
            for text in texts:
                match = compiled.search(text)
                if match:
                    return RuleMatch(
                        rule=rule, matched_text=match.group(0), category=rule.category
                    )
        return None

    def resolve_detailed(self, txn: Transaction, override: str | None = None) -> Resolution:
        """Resolve the effective category along with its source."""
        if override:
            return Resolution(category=override, source="override")
        match = self.find_match(txn)
        if match is not None:
            return Resolution(category=match.category, source="rule", rule_id=match.rule.id)
        if txn.category_primary:
            return Resolution(category=txn.category_primary, source="provider")
        return Resolution(category=UNCATEGORIZED, source="default")

    def resolve(self, txn: Transaction, override: str | None = None) -> str:
        """Resolve the effective category label for a transaction."""
        return self.resolve_detailed(txn, override).category


async def apply_rule(repo: Repository, rule: Rule, limit: int = MAX_RULE_CANDIDATES) -> int:
    """Materialize a contains-rule as overrides on matching transactions.

    Scans at most ``limit`` candidates. Each override is written on its own,
    so a failure part-way leaves earlier ones in place; re-running gives the
    same result. Returns the number of transactions overridden.
    """
    if rule.match_type != MatchType.CONTAINS:
        raise InvalidRequestError("Only contains rules can be applied eagerly")
    candidates = await repo.find_transactions_containing(rule.pattern, limit)
    for txn in candidates:
        await repo.save_override(txn.id, rule.category)
    log.info(
        f"Rule {rule.id} ({rule.pattern!r} -> {rule.category}): "
        f"{len(candidates)} override(s)"
    )
    return len(candidates)
