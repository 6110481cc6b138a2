from __future__ import annotations

from dataclasses import dataclass

from .booking import ReservationRecord

# Predicates see a reservation together with the type id of its resource
# (None when the resource is missing from the catalogue).


class ReservationPredicate:
    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        raise NotImplementedError

    def __and__(self, other: "ReservationPredicate") -> "ReservationPredicate":
        return AllOf((self, other))


@dataclass(frozen=True)
class AllOf(ReservationPredicate):
    predicates: tuple[ReservationPredicate, ...]

    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        return all(predicate(record, resource_type_id) for predicate in self.predicates)


@dataclass(frozen=True)
class StatusIs(ReservationPredicate):
    status: str

    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        return record.status == self.status


@dataclass(frozen=True)
class OwnedBy(ReservationPredicate):
    user_id: str

    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        return record.user_id == self.user_id


@dataclass(frozen=True)
class OnResource(ReservationPredicate):
    resource_id: str

    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        return record.resource_id == self.resource_id


@dataclass(frozen=True)
class ResourceTypeIn(ReservationPredicate):
    resource_type_ids: frozenset[str]

    def __call__(self, record: ReservationRecord, resource_type_id: str | None) -> bool:
        return resource_type_id is not None and resource_type_id in self.resource_type_ids

