"""
Identity Resolver Module
========================

Decides whether an animal seen on one source is the same animal as an
identity already known from another source, using registry identifiers,
name, country, breed and date of birth as weighted evidence.

Resolution is deterministic: identifiers derive from record content and
ties are broken by position in the known list, never by clock or chance.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Sequence

from equine_agent.core.enums import ResolutionAction
from equine_agent.core.schema import NormalizedAnimal, NormalizedRanking, NormalizedResult
from equine_agent.ingestion.errors import IdentityAmbiguous

if TYPE_CHECKING:
    from equine_agent.ingestion.registry import IdentityResolutionConfig

logger = logging.getLogger(__name__)

# Fields filled from a merged candidate when the identity lacks them
_MERGEABLE_FIELDS = ("breed", "country", "dob", "sex", "color", "sire_name", "dam_name")


def _key(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().casefold()


def merge_key(animal: NormalizedAnimal) -> str:
    """
    Stable key describing what is known to identify an animal.

    Registry identifiers win; otherwise name, country and date of birth.
    """
    if animal.external_ids:
        return "|".join(f"{k}:{v}" for k, v in sorted(animal.external_ids.items()))
    return "|".join((_key(animal.name), _key(animal.country), animal.dob))


@dataclass
class Resolution:
    """Outcome of resolving one candidate."""

    identity: NormalizedAnimal
    action: ResolutionAction
    score: float
    matched_id: str | None = None
    warning: IdentityAmbiguous | None = None


class IdentityResolver:
    """
    Resolves animal candidates against known identities.

    Evidence weights:
    - each registry whose identifier matches: ``registry_id_weight``
    - same name and country: half of ``name_country_breed_weight``, the
      full weight when the breed also matches
    - same name and date of birth: ``name_dob_weight``

    The score is capped at 1.0. A candidate is merged into the best
    match when the score reaches ``merge_threshold`` and at least one
    registry identifier agrees.
    """

    def __init__(
        self,
        merge_threshold: float = 0.6,
        registry_id_weight: float = 0.4,
        name_country_breed_weight: float = 0.2,
        name_dob_weight: float = 0.2,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            merge_threshold: Score >= this (with an identifier match) merges
            registry_id_weight: Weight per matching registry identifier
            name_country_breed_weight: Weight of a name/country/breed match
            name_dob_weight: Weight of a name and date-of-birth match
        """
        self.merge_threshold = merge_threshold
        self.registry_id_weight = registry_id_weight
        self.name_country_breed_weight = name_country_breed_weight
        self.name_dob_weight = name_dob_weight

    @classmethod
    def from_config(cls, config: IdentityResolutionConfig) -> IdentityResolver:
        """Create resolver from configuration."""
        return cls(
            merge_threshold=config.merge_threshold,
            registry_id_weight=config.registry_id_weight,
            name_country_breed_weight=config.name_country_breed_weight,
            name_dob_weight=config.name_dob_weight,
        )

    @staticmethod
    def matching_registries(candidate: NormalizedAnimal, known: NormalizedAnimal) -> list[str]:
        """Registries for which both records carry the same identifier."""
        return sorted(
            registry
            for registry, value in candidate.external_ids.items()
            if value and known.external_ids.get(registry) == value
        )

    def score(self, candidate: NormalizedAnimal, known: NormalizedAnimal) -> float:
        """
        Confidence that two records describe the same animal.

        Args:
            candidate: Newly seen record
            known: Existing identity

        Returns:
            Score in [0, 1]
        """
        total = self.registry_id_weight * len(self.matching_registries(candidate, known))

        same_name = bool(candidate.name) and _key(candidate.name) == _key(known.name)
        if same_name and candidate.country and _key(candidate.country) == _key(known.country):
            if candidate.breed and _key(candidate.breed) == _key(known.breed):
                total += self.name_country_breed_weight
            else:
                total += self.name_country_breed_weight / 2
        if same_name and candidate.dob and candidate.dob == known.dob:
            total += self.name_dob_weight

        return round(min(total, 1.0), 6)

    def resolve(
        self,
        candidate: NormalizedAnimal,
        known: Sequence[NormalizedAnimal],
    ) -> Resolution:
        """
        Resolve a candidate against known identities.

        A merge updates the matched identity in place; otherwise a new
        identity is returned and ``known`` is left untouched.

        Args:
            candidate: Normalized animal record
            known: Existing identities, in priority order

        Returns:
            Resolution with the identity and the action taken
        """
        best: NormalizedAnimal | None = None
        best_score = 0.0
        for identity in known:
            score = self.score(candidate, identity)
            # Strictly greater keeps the earliest identity on ties
            if score > best_score:
                best, best_score = identity, score

        if best is not None and best_score >= self.merge_threshold:
            if self.matching_registries(candidate, best):
                self._merge(best, candidate, best_score)
                return Resolution(
                    identity=best,
                    action=ResolutionAction.MERGED,
                    score=best_score,
                    matched_id=best.identity_id,
                )

        identity = self._new_identity(candidate, known)
        if best is None:
            identity.identity_confidence = 0.0
            return Resolution(identity=identity, action=ResolutionAction.CREATED, score=0.0)

        identity.identity_confidence = best_score
        identity.linked_identity_ids = [best.identity_id]
        warning = IdentityAmbiguous(candidate.name, best_score)
        logger.info(f"{warning}; linked to {best.identity_id}")
        return Resolution(
            identity=identity,
            action=ResolutionAction.LINKED_LOW_CONFIDENCE,
            score=best_score,
            matched_id=best.identity_id,
            warning=warning,
        )

    def resolve_all(
        self,
        candidates: Iterable[NormalizedAnimal],
        known: list[NormalizedAnimal] | None = None,
    ) -> tuple[list[NormalizedAnimal], list[Resolution]]:
        """
        Reduce a sequence of candidates to a list of identities.

        Args:
            candidates: Records in resolution order
            known: Identities to start from; extended in place

        Returns:
            The identities and one Resolution per candidate
        """
        identities = known if known is not None else []
        resolutions = []
        for candidate in candidates:
            resolution = self.resolve(candidate, identities)
            if resolution.action != ResolutionAction.MERGED:
                identities.append(resolution.identity)
            resolutions.append(resolution)
        return identities, resolutions

    def find_reference(
        self,
        candidate: NormalizedAnimal,
        known: Sequence[NormalizedAnimal],
    ) -> NormalizedAnimal | None:
        """
        Identity a result or ranking row refers to, without merging.

        An identity with the same registry identifier wins, then a unique
        identity with the same name and country (or the same name alone
        when the row has no country).
        """
        for identity in known:
            if self.matching_registries(candidate, identity):
                return identity

        name = _key(candidate.name)
        country = _key(candidate.country)
        matches = [
            identity
            for identity in known
            if _key(identity.name) == name
            and (not country or not identity.country or _key(identity.country) == country)
        ]
        if len(matches) == 1:
            return matches[0]
        return None

    def _merge(self, identity: NormalizedAnimal, candidate: NormalizedAnimal, score: float) -> None:
        for field_name in _MERGEABLE_FIELDS:
            if not getattr(identity, field_name) and getattr(candidate, field_name):
                setattr(identity, field_name, getattr(candidate, field_name))
        if not identity.height_cm and candidate.height_cm:
            identity.height_cm = candidate.height_cm

        # Existing identifiers are kept on conflict
        for registry, value in candidate.external_ids.items():
            identity.external_ids.setdefault(registry, value)
        for source in candidate.sources:
            if source not in identity.sources:
                identity.sources.append(source)

        identity.identity_confidence = max(identity.identity_confidence, score)

    def _new_identity(
        self,
        candidate: NormalizedAnimal,
        known: Sequence[NormalizedAnimal],
    ) -> NormalizedAnimal:
        key = merge_key(candidate)
        base = "horse_" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
        taken = {identity.identity_id for identity in known}
        identity_id = base
        ordinal = 2
        while identity_id in taken:
            identity_id = f"{base}-{ordinal}"
            ordinal += 1
        return candidate.model_copy(
            deep=True,
            update={"identity_id": identity_id, "merge_key": key},
        )


@dataclass
class Reduction:
    """Identities plus the result and ranking records linked to them."""

    identities: list[NormalizedAnimal]
    resolutions: list[Resolution]
    linked: list[NormalizedResult | NormalizedRanking]


def reduce_identities(
    resolver: IdentityResolver,
    animals: Iterable[NormalizedAnimal],
    references: Iterable[tuple[NormalizedResult | NormalizedRanking, NormalizedAnimal]],
    known: list[NormalizedAnimal] | None = None,
) -> Reduction:
    """
    Resolve animal records, then point every result and ranking at an identity.

    Animal records are resolved first so that rows referring to them link
    to the richer identity. A row whose animal matches no identity creates
    one, so every returned record carries an ``animal_id``.

    Args:
        resolver: Resolver holding the weights and threshold
        animals: Animal records in resolution order
        references: (record, identity candidate) pairs for results and rankings
        known: Identities to start from; extended in place
    """
    identities, resolutions = resolver.resolve_all(animals, known)
    linked: list[NormalizedResult | NormalizedRanking] = []
    for record, candidate in references:
        identity = resolver.find_reference(candidate, identities)
        if identity is None:
            resolution = resolver.resolve(candidate, identities)
            if resolution.action != ResolutionAction.MERGED:
                identities.append(resolution.identity)
            resolutions.append(resolution)
            identity = resolution.identity
        linked.append(record.model_copy(update={"animal_id": identity.identity_id}))
    return Reduction(identities=identities, resolutions=resolutions, linked=linked)
