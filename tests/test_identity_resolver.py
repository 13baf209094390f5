"""Unit tests for identity resolution of persons and institutions."""

from datacite_engine.models import Affiliation, Agent, AgentKind, ContributorRole
from datacite_engine.utils.identity_resolver import (
    CandidateAgent,
    find_reusable_agent,
    merge_affiliations,
    resolve,
)


ORCID_A = "0000-0002-1825-0097"
ORCID_B = "0000-0001-5109-3700"


def person(family, given, *roles, orcid=None, email=None, affiliations=None):
    """Build a person candidate."""
    return CandidateAgent(
        kind=AgentKind.PERSON,
        given_name=given,
        family_name=family,
        roles=list(roles),
        orcid=orcid,
        email=email,
        affiliations=affiliations or [],
    )


class TestContactCollapse:
    """Test that an author who is also contact person appears once."""

    def test_foerste_spelling_variants_collapse(self):
        """Test Förste (author, ORCID) and Foerste (contact, email) become one contact author."""
        candidates = [
            person("Förste", "Christoph", ContributorRole.CREATOR, orcid=ORCID_A),
            person("Foerste", "Christoph", ContributorRole.POINT_OF_CONTACT, email="foerste@gfz.de"),
        ]

        result = resolve(candidates)

        assert len(result.authors) == 1
        assert result.contributors == []
        author = result.authors[0]
        assert author.family_name == "Förste"
        assert author.orcid == ORCID_A
        assert author.is_contact is True
        assert author.email == "foerste@gfz.de"
        assert ContributorRole.POINT_OF_CONTACT in author.roles

    def test_contact_listed_before_author(self):
        """Test that the order of appearances does not matter for the collapse."""
        candidates = [
            person("Doe", "Jane", ContributorRole.CONTACT_PERSON, email="jane@example.org"),
            person("Doe", "Jane", ContributorRole.CREATOR),
        ]

        result = resolve(candidates)

        assert len(result.authors) == 1
        assert result.authors[0].is_contact
        assert result.contributors == []

    def test_contributor_roles_merged_into_author(self):
        """Test that other contributor roles of an author are kept on the author."""
        candidates = [
            person("Doe", "Jane", ContributorRole.CREATOR),
            person("Doe", "Jane", ContributorRole.DATA_CURATOR),
        ]

        result = resolve(candidates)

        assert len(result.authors) == 1
        assert result.authors[0].roles == [ContributorRole.CREATOR, ContributorRole.DATA_CURATOR]
        assert result.authors[0].is_contact is False


class TestUnderMerge:
    """Test that ambiguous identities are kept apart."""

    def test_different_orcids_not_merged(self):
        """Test that same-named authors with different ORCIDs remain two authors."""
        candidates = [
            person("Schmidt", "Anna", ContributorRole.CREATOR, orcid=ORCID_A),
            person("Schmidt", "Anna", ContributorRole.CREATOR, orcid=ORCID_B),
        ]

        result = resolve(candidates)

        assert [a.orcid for a in result.authors] == [ORCID_A, ORCID_B]

    def test_contributor_with_other_orcid_stays_contributor(self):
        """Test that a contributor whose ORCID differs from the author's is not merged."""
        candidates = [
            person("Schmidt", "Anna", ContributorRole.CREATOR, orcid=ORCID_A),
            person("Schmidt", "Anna", ContributorRole.POINT_OF_CONTACT, orcid=ORCID_B),
        ]

        result = resolve(candidates)

        assert len(result.authors) == 1
        assert result.authors[0].is_contact is False
        assert len(result.contributors) == 1
        assert result.contributors[0].orcid == ORCID_B
        assert result.contributors[0].is_contact is True

    def test_contact_without_orcid_not_assigned_to_one_of_two_authors(self):
        """Test that a contact matching two same-named authors with different ORCIDs stays separate."""
        candidates = [
            person("Müller", "Jan", ContributorRole.CREATOR, orcid=ORCID_A),
            person("Müller", "Jan", ContributorRole.CREATOR, orcid=ORCID_B),
            person("Mueller", "Jan", ContributorRole.POINT_OF_CONTACT, email="jan@example.org"),
        ]

        result = resolve(candidates)

        assert [a.orcid for a in result.authors] == [ORCID_A, ORCID_B]
        assert not any(a.is_contact for a in result.authors)
        assert all(a.email is None for a in result.authors)
        assert len(result.contributors) == 1
        assert result.contributors[0].is_contact is True
        assert result.contributors[0].email == "jan@example.org"

    def test_orcid_url_and_bare_id_merge(self):
        """Test that the same ORCID in URL and bare form is one identity."""
        candidates = [
            person("Schmidt", "Anna", ContributorRole.CREATOR, orcid=f"https://orcid.org/{ORCID_A}"),
            person("Schmidt", "Anna", ContributorRole.CREATOR, orcid=ORCID_A),
        ]

        assert len(resolve(candidates).authors) == 1

    def test_person_and_institution_not_merged(self):
        """Test that a person and an institution with the same name stay apart."""
        candidates = [
            CandidateAgent(kind=AgentKind.INSTITUTION, name="Smith", roles=[ContributorRole.SPONSOR]),
            person("Smith", None, ContributorRole.CREATOR),
        ]

        result = resolve(candidates)

        assert len(result.authors) == 1
        assert len(result.contributors) == 1
        assert result.contributors[0].kind is AgentKind.INSTITUTION


class TestOrdering:
    """Test positions and link conversion."""

    def test_author_order_follows_input(self):
        """Test that authors keep their first appearance order."""
        candidates = [
            person("B", "Second", ContributorRole.DATA_COLLECTOR),
            person("A", "First", ContributorRole.CREATOR),
            person("B", "Second", ContributorRole.CREATOR),
        ]

        result = resolve(candidates)

        assert [a.family_name for a in result.authors] == ["A", "B"]
        assert [a.position for a in result.authors] == [0, 1]

    def test_to_links(self):
        """Test conversion into creator and contributor links."""
        candidates = [
            person("Doe", "Jane", ContributorRole.CREATOR, orcid=ORCID_A),
            CandidateAgent(
                kind=AgentKind.INSTITUTION,
                name="GFZ",
                roles=[ContributorRole.HOSTING_INSTITUTION],
                ror="04z8jg394",
            ),
        ]

        creators, contributors = resolve(candidates).to_links()

        assert creators[0].agent.display_name == "Doe, Jane"
        assert creators[0].agent.identifier == ORCID_A
        assert creators[0].agent.identifier_scheme == "ORCID"
        assert contributors[0].agent.identifier == "https://ror.org/04z8jg394"
        assert contributors[0].roles == [ContributorRole.HOSTING_INSTITUTION]


class TestAffiliations:
    """Test affiliation merging."""

    def test_duplicates_removed(self):
        """Test that affiliations are de-duplicated by ROR id and by name."""
        merged = merge_affiliations([
            Affiliation(name="GFZ", identifier="https://ror.org/04z8jg394"),
            Affiliation(name="GFZ Potsdam", identifier="04z8jg394"),
            Affiliation(name="Uni Potsdam"),
            Affiliation(name="uni  potsdam"),
        ])

        assert [a.name for a in merged] == ["GFZ", "Uni Potsdam"]

    def test_affiliations_accumulate_across_appearances(self):
        """Test that affiliations from all appearances end up on the identity."""
        candidates = [
            person("Doe", "Jane", ContributorRole.CREATOR, affiliations=[Affiliation(name="GFZ")]),
            person("Doe", "Jane", ContributorRole.CONTACT_PERSON, affiliations=[Affiliation(name="AWI")]),
        ]

        author = resolve(candidates).authors[0]

        assert [a.name for a in author.affiliations] == ["GFZ", "AWI"]


class TestReuse:
    """Test reuse of persisted agents."""

    def test_reuse_requires_name_and_identifier(self):
        """Test that a stored agent is reused only if name and ORCID match."""
        stored = Agent(given_name="Jane", family_name="Doe", identifier=ORCID_A, agent_id=7)

        match = Agent(given_name="Jane", family_name="Doe", identifier=f"https://orcid.org/{ORCID_A}")
        other_name = Agent(given_name="John", family_name="Roe", identifier=ORCID_A)
        no_orcid = Agent(given_name="Jane", family_name="Doe")

        assert find_reusable_agent(match, [stored]) is stored
        assert find_reusable_agent(other_name, [stored]) is None
        assert find_reusable_agent(no_orcid, [stored]) is None

    def test_resolve_sets_agent_id(self):
        """Test that resolve() carries the id of a reusable agent."""
        stored = Agent(given_name="Jane", family_name="Doe", identifier=ORCID_A, agent_id=7)

        result = resolve([person("Doe", "Jane", ContributorRole.CREATOR, orcid=ORCID_A)], [stored])

        assert result.authors[0].agent_id == 7
        creators, _ = result.to_links()
        assert creators[0].agent.agent_id == 7
