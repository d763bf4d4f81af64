from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Literal, Protocol, Union

ALL_CATEGORIES_WIRE = "ALL"


@dataclass(frozen=True)
class SpecificCategory:
    name: str


@dataclass(frozen=True)
class AllCategories:
    pass


CategoryScope = Union[SpecificCategory, AllCategories]


def parse_scope(value: str) -> CategoryScope:
    name = value.strip()
    if not name:
        raise ValueError("category must not be empty")
    if name == ALL_CATEGORIES_WIRE:
        return AllCategories()
    return SpecificCategory(name)


def scope_to_wire(scope: CategoryScope) -> str:
    if isinstance(scope, AllCategories):
        return ALL_CATEGORIES_WIRE
    return scope.name


class RuleLike(Protocol):
    id: str
    supplier_id: str
    category: str
    rate: Decimal


@dataclass(frozen=True)
class CommissionResolution:
    supplier_id: str
    category: str | None
    rate: Decimal
    matched: Literal["category", "all", "none"]
    rule_id: str | None = None

    @property
    def no_rule_found(self) -> bool:
        return self.matched == "none"

    def to_dict(self) -> dict:
        return {
            "supplier_id": self.supplier_id,
            "category": self.category,
            "rate": self.rate,
            "matched": self.matched,
            "rule_id": self.rule_id,
            "no_rule_found": self.no_rule_found,
        }


def resolve_rate(rules: Iterable[RuleLike], supplier_id: str, category: str | None) -> CommissionResolution:
    exact: RuleLike | None = None
    fallback: RuleLike | None = None
    wanted = SpecificCategory(category.strip()) if category and category.strip() else None

    for rule in rules:
        if rule.supplier_id != supplier_id:
            continue
        scope = parse_scope(rule.category)
        if isinstance(scope, AllCategories):
            fallback = rule
        elif wanted is not None and scope == wanted:
            exact = rule

    if exact is not None:
        return CommissionResolution(supplier_id, category, Decimal(exact.rate), "category", exact.id)
    if fallback is not None:
        return CommissionResolution(supplier_id, category, Decimal(fallback.rate), "all", fallback.id)
    return CommissionResolution(supplier_id, category, Decimal("0"), "none")
