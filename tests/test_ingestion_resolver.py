"""Tests for the ingestion resolver module."""

import pytest

from equine_agent.core.enums import ResolutionAction, ResultStatus
from equine_agent.core.schema import NormalizedAnimal, NormalizedRanking, NormalizedResult
from equine_agent.ingestion.errors import IdentityAmbiguous
from equine_agent.ingestion.registry import IdentityResolutionConfig
from equine_agent.ingestion.resolver import IdentityResolver, merge_key, reduce_identities


def _horse(name: str = "Thunder", **kwargs) -> NormalizedAnimal:
    return NormalizedAnimal(name=name, **kwargs)


@pytest.fixture
def resolver() -> IdentityResolver:
    return IdentityResolver()


class TestScore:
    """Tests for evidence weighting."""

    def test_registry_id_weight(self, resolver: IdentityResolver) -> None:
        a = _horse(external_ids={"fei": "104AB12"})
        b = _horse("THUNDER Z", external_ids={"fei": "104AB12"})
        assert resolver.score(a, b) == pytest.approx(0.4)

    def test_each_matching_registry_counts(self, resolver: IdentityResolver) -> None:
        a = _horse(external_ids={"fei": "104AB12", "usef": "5551234"})
        b = _horse("Other", external_ids={"fei": "104AB12", "usef": "5551234"})
        assert resolver.score(a, b) == pytest.approx(0.8)

    def test_name_country_breed(self, resolver: IdentityResolver) -> None:
        a = _horse(country="FRA", breed="Selle Français")
        b = _horse("thunder", country="FRA", breed="selle français")
        assert resolver.score(a, b) == pytest.approx(0.2)

    def test_name_country_without_breed_is_half(self, resolver: IdentityResolver) -> None:
        a = _horse(country="FRA")
        b = _horse(country="FRA", breed="Selle Français")
        assert resolver.score(a, b) == pytest.approx(0.1)

    def test_name_dob(self, resolver: IdentityResolver) -> None:
        a = _horse(dob="2012-05-04")
        b = _horse(dob="2012-05-04")
        assert resolver.score(a, b) == pytest.approx(0.2)

    def test_all_evidence(self, resolver: IdentityResolver) -> None:
        a = _horse(country="FRA", breed="SF", dob="2012-05-04", external_ids={"fei": "104AB12"})
        b = _horse(country="FRA", breed="SF", dob="2012-05-04", external_ids={"fei": "104AB12"})
        assert resolver.score(a, b) == pytest.approx(0.8)

    def test_score_is_capped(self) -> None:
        resolver = IdentityResolver(registry_id_weight=0.5)
        ids = {"fei": "1", "usef": "2", "kwpn": "3"}
        assert resolver.score(_horse(external_ids=ids), _horse(external_ids=ids)) == 1.0

    def test_different_names_score_nothing_without_ids(self, resolver: IdentityResolver) -> None:
        a = _horse("Thunder", country="FRA", dob="2012-05-04")
        b = _horse("Comet", country="FRA", dob="2012-05-04")
        assert resolver.score(a, b) == 0.0

    def test_from_config(self) -> None:
        config = IdentityResolutionConfig(merge_threshold=0.7, registry_id_weight=0.5)
        resolver = IdentityResolver.from_config(config)
        assert resolver.merge_threshold == 0.7
        assert resolver.registry_id_weight == 0.5


class TestResolve:
    """Tests for merge, link and create decisions."""

    def test_create_when_nothing_known(self, resolver: IdentityResolver) -> None:
        resolution = resolver.resolve(_horse(), [])

        assert resolution.action == ResolutionAction.CREATED
        assert resolution.identity.identity_id.startswith("horse_")
        assert resolution.identity.identity_confidence == 0.0
        assert resolution.warning is None

    def test_merge_above_threshold_with_id(self, resolver: IdentityResolver) -> None:
        known = _horse(
            identity_id="horse_a",
            country="FRA",
            breed="SF",
            external_ids={"fei": "104AB12"},
            sources=["FEI"],
        )
        candidate = _horse(
            country="FRA",
            breed="SF",
            dob="2012-05-04",
            sire_name="Kannan",
            external_ids={"fei": "104AB12", "usef": "5551234"},
            sources=["USEF"],
        )

        resolution = resolver.resolve(candidate, [known])

        assert resolution.action == ResolutionAction.MERGED
        assert resolution.identity is known
        assert resolution.matched_id == "horse_a"
        assert resolution.score == pytest.approx(0.6)
        assert known.dob == "2012-05-04"
        assert known.sire_name == "Kannan"
        assert known.external_ids == {"fei": "104AB12", "usef": "5551234"}
        assert known.sources == ["FEI", "USEF"]
        assert known.identity_confidence == pytest.approx(0.6)

    def test_merge_keeps_existing_values(self, resolver: IdentityResolver) -> None:
        known = _horse(
            identity_id="horse_a",
            country="FRA",
            breed="SF",
            color="Bay",
            external_ids={"fei": "104AB12", "usef": "111"},
        )
        candidate = _horse(
            country="FRA",
            breed="SF",
            color="Grey",
            external_ids={"fei": "104AB12", "usef": "999"},
        )

        resolver.resolve(candidate, [known])

        assert known.color == "Bay"
        assert known.external_ids["usef"] == "111"

    def test_threshold_without_id_links(self, resolver: IdentityResolver) -> None:
        known = _horse(identity_id="horse_a", country="FRA", breed="SF", dob="2012-05-04")
        candidate = _horse(country="FRA", breed="SF", dob="2012-05-04")

        resolution = resolver.resolve(candidate, [known])

        assert resolution.action == ResolutionAction.LINKED_LOW_CONFIDENCE
        assert resolution.identity is not known
        assert resolution.identity.linked_identity_ids == ["horse_a"]
        assert resolution.identity.identity_confidence == pytest.approx(0.4)
        assert isinstance(resolution.warning, IdentityAmbiguous)
        assert resolution.warning.score == pytest.approx(0.4)

    def test_id_alone_below_threshold_links(self, resolver: IdentityResolver) -> None:
        known = _horse("Thunder Z", identity_id="horse_a", external_ids={"fei": "104AB12"})
        candidate = _horse(external_ids={"fei": "104AB12"})

        resolution = resolver.resolve(candidate, [known])

        assert resolution.action == ResolutionAction.LINKED_LOW_CONFIDENCE
        assert resolution.matched_id == "horse_a"

    def test_ties_go_to_earliest_identity(self, resolver: IdentityResolver) -> None:
        first = _horse(identity_id="horse_a", country="FRA", breed="SF", external_ids={"fei": "1"})
        second = _horse(identity_id="horse_b", country="FRA", breed="SF", external_ids={"fei": "1"})
        candidate = _horse(country="FRA", breed="SF", external_ids={"fei": "1"})

        resolution = resolver.resolve(candidate, [first, second])

        assert resolution.matched_id == "horse_a"

    def test_confidence_never_decreases(self, resolver: IdentityResolver) -> None:
        known = _horse(
            identity_id="horse_a",
            country="FRA",
            breed="SF",
            dob="2012-05-04",
            external_ids={"fei": "1"},
        )
        strong = _horse(country="FRA", breed="SF", dob="2012-05-04", external_ids={"fei": "1"})
        weaker = _horse(country="FRA", breed="SF", external_ids={"fei": "1"})

        resolver.resolve(strong, [known])
        after_strong = known.identity_confidence
        resolver.resolve(weaker, [known])

        assert after_strong == pytest.approx(0.8)
        assert known.identity_confidence == pytest.approx(0.8)

    def test_identifiers_are_deterministic(self) -> None:
        candidate = _horse(country="FRA", dob="2012-05-04")
        first = IdentityResolver().resolve(candidate, []).identity
        second = IdentityResolver().resolve(candidate, []).identity

        assert first.identity_id == second.identity_id
        assert first.merge_key == merge_key(candidate)

    def test_identifier_collision_gets_ordinal(self, resolver: IdentityResolver) -> None:
        candidate = _horse("Comet")
        identities, _ = resolver.resolve_all([candidate, _horse("Comet")])

        assert len(identities) == 2
        assert identities[1].identity_id == f"{identities[0].identity_id}-2"


class TestMergeKey:
    """Tests for merge_key."""

    def test_prefers_registry_ids(self) -> None:
        horse = _horse(external_ids={"usef": "5551234", "fei": "104AB12"})
        assert merge_key(horse) == "fei:104AB12|usef:5551234"

    def test_name_country_dob(self) -> None:
        horse = _horse("  Thunder  ", country="FRA", dob="2012-05-04")
        assert merge_key(horse) == "thunder|fra|2012-05-04"


class TestFindReference:
    """Tests for linking result rows to identities."""

    def test_by_registry_id(self, resolver: IdentityResolver) -> None:
        known = [_horse("Thunder Z", identity_id="a", external_ids={"fei": "1"})]
        assert resolver.find_reference(_horse(external_ids={"fei": "1"}), known) is known[0]

    def test_by_unique_name_and_country(self, resolver: IdentityResolver) -> None:
        known = [_horse(identity_id="a", country="FRA"), _horse(identity_id="b", country="GER")]
        assert resolver.find_reference(_horse(country="GER"), known) is known[1]

    def test_name_only_when_row_has_no_country(self, resolver: IdentityResolver) -> None:
        known = [_horse(identity_id="a", country="FRA")]
        assert resolver.find_reference(_horse(), known) is known[0]

    def test_ambiguous_name_finds_nothing(self, resolver: IdentityResolver) -> None:
        known = [_horse(identity_id="a", country="FRA"), _horse(identity_id="b", country="GER")]
        assert resolver.find_reference(_horse(), known) is None


def _result(name: str, placing: int | None = 1, country: str = "") -> NormalizedResult:
    return NormalizedResult(
        result_id=f"r-{name}",
        animal_name=name,
        animal_country=country,
        placing=placing,
        status=ResultStatus.PLACED,
        source="USEF",
    )


class TestReduceIdentities:
    """Tests for reduce_identities."""

    def test_results_link_to_animal_records(self, resolver: IdentityResolver) -> None:
        animals = [_horse(country="FRA", external_ids={"fei": "1"})]
        result = _result("Thunder", country="FRA")
        reduction = reduce_identities(resolver, animals, [(result, _horse(country="FRA"))])

        assert len(reduction.identities) == 1
        assert reduction.linked[0].animal_id == reduction.identities[0].identity_id

    def test_unknown_animal_creates_identity(self, resolver: IdentityResolver) -> None:
        ranking = NormalizedRanking(animal_name="Comet", rank_position=2, source="FEI")
        reduction = reduce_identities(resolver, [], [(ranking, _horse("Comet"))])

        assert len(reduction.identities) == 1
        assert reduction.linked[0].animal_id == reduction.identities[0].identity_id
        assert reduction.resolutions[0].action == ResolutionAction.CREATED

    def test_every_record_gets_an_identity(self, resolver: IdentityResolver) -> None:
        refs = [(_result(n), _horse(n)) for n in ("Thunder", "Comet", "Thunder")]
        reduction = reduce_identities(resolver, [], refs)

        assert all(r.animal_id for r in reduction.linked)
        assert reduction.linked[0].animal_id == reduction.linked[2].animal_id
        assert len(reduction.identities) == 2

    def test_known_list_is_extended(self, resolver: IdentityResolver) -> None:
        known = [_horse(identity_id="horse_a", country="FRA")]
        reduction = reduce_identities(resolver, [_horse("Comet")], [], known=known)

        assert reduction.identities is known
        assert [i.name for i in known] == ["Thunder", "Comet"]
