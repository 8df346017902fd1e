"""Tests for templates and for creating contracts from them."""
from datetime import date

import pytest
from esign.models.domain import Contract
from esign.models.enums import ContractStatus, SignerStatus, SigningPolicy
from esign.services.contract_factory import ContractFactory
from esign.services.errors import ConcurrencyConflict, InvalidStateError, NotFoundError, ValidationFailure
from esign.services.numbering import content_hash
from esign.services.templates import TemplateStore, find_placeholders, resolve_placeholders
from tests.conftest import ADMIN, CONSULTANT, CREATOR, _create


class TestPlaceholders:

    def test_find_placeholders_in_first_seen_order(self):
        content = "{{ b }} then {{a}} then {{b}} again"

        assert find_placeholders(content) == ["b", "a"]

    def test_unknown_placeholders_are_left_as_written(self):
        resolved = resolve_placeholders("Hello {{name}}, rate {{ rate }}", {"name": "Sarah"})

        assert resolved == "Hello Sarah, rate {{ rate }}"

    def test_none_values_do_not_resolve(self):
        assert resolve_placeholders("{{project_id}}", {"project_id": None}) == "{{project_id}}"


class TestTemplateStore:

    def test_create_records_placeholders_and_roles(self, db_session, ica_template):
        assert ica_template.version == 1
        assert ica_template.is_active is True
        assert ica_template.required_signer_roles == ["consultant", "admin"]
        assert ica_template.placeholders == ["contract_number", "consultant_name", "effective_date"]

    def test_declared_placeholders_are_kept(self, db_session):
        template = TemplateStore(db_session).create_template(
            name="SOW", content="Scope for {{client}}", required_signer_roles=["consultant"],
            placeholders=["rate"]
        )

        assert template.placeholders == ["client", "rate"]

    @pytest.mark.parametrize("roles", [[], ["consultant", "consultant"], ["consultant", " "]])
    def test_bad_roles_are_refused(self, db_session, roles):
        with pytest.raises(ValidationFailure):
            TemplateStore(db_session).create_template(name="Bad", content="Text", required_signer_roles=roles)

    def test_content_change_bumps_version(self, db_session, ica_template):
        updated = TemplateStore(db_session).update_template(ica_template.id, content="New text {{client}}")

        assert updated.version == 2
        assert updated.placeholders == ["client"]

    def test_rename_keeps_version(self, db_session, ica_template):
        updated = TemplateStore(db_session).update_template(ica_template.id, name="ICA 2026")

        assert updated.name == "ICA 2026"
        assert updated.version == 1

    def test_role_change_bumps_version(self, db_session, ica_template):
        updated = TemplateStore(db_session).update_template(
            ica_template.id, required_signer_roles=["consultant", "admin", "witness"]
        )

        assert updated.version == 2

    def test_deactivate(self, db_session, ica_template):
        store = TemplateStore(db_session)
        store.deactivate_template(ica_template.id)

        assert store.list_templates(active_only=True) == []
        assert len(store.list_templates()) == 1
        with pytest.raises(InvalidStateError):
            store.deactivate_template(ica_template.id)

    def test_missing_template_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            TemplateStore(db_session).get_template(404)


class TestContractFactory:

    def test_creates_draft_with_ordered_signers(self, db_session, draft_contract):
        assert draft_contract.status == ContractStatus.DRAFT
        assert draft_contract.signing_policy == SigningPolicy.SEQUENTIAL
        assert [(s.role, s.user_id, s.signing_order) for s in draft_contract.signers] == [
            ("consultant", CONSULTANT, 1),
            ("admin", ADMIN, 2),
        ]
        assert all(s.status == SignerStatus.PENDING for s in draft_contract.signers)

    def test_contract_numbers_follow_the_year_sequence(self, db_session, clock, ica_template):
        first = _create(db_session, clock, ica_template)
        second = _create(db_session, clock, ica_template)

        assert first.contract_number == "CON-2026-001"
        assert second.contract_number == "CON-2026-002"

    def test_content_is_resolved_and_frozen(self, db_session, draft_contract):
        assert "{{" not in draft_contract.content
        assert "Sarah Chen" in draft_contract.content
        assert draft_contract.contract_number in draft_contract.content
        assert "2026-03-01" in draft_contract.content
        assert draft_contract.unresolved_placeholders == []

    def test_template_edit_does_not_touch_existing_contracts(self, db_session, clock, ica_template, draft_contract):
        before = content_hash(draft_contract.content)

        TemplateStore(db_session).update_template(ica_template.id, content="Rewritten {{consultant_name}}")
        db_session.expire_all()

        contract = db_session.get(Contract, draft_contract.id)
        assert content_hash(contract.content) == before
        assert contract.template_version == 1

    def test_missing_parameters_are_recorded(self, db_session, clock, ica_template):
        contract = ContractFactory(db_session, now=clock).create_contract(
            template_id=ica_template.id,
            created_by_id=CREATOR,
            title="No name yet",
            consultant_id=CONSULTANT,
            signer_assignments={"admin": ADMIN}
        )

        assert contract.unresolved_placeholders == ["consultant_name", "effective_date"]

    def test_inactive_template_cannot_be_used(self, db_session, clock, ica_template):
        TemplateStore(db_session).deactivate_template(ica_template.id)

        with pytest.raises(InvalidStateError):
            _create(db_session, clock, ica_template)

    @pytest.mark.parametrize("assignments", [
        {},
        {"admin": ADMIN, "witness": "user_witness"},
        {"admin": CONSULTANT},
    ])
    def test_bad_signer_assignments_are_refused(self, db_session, clock, ica_template, assignments):
        with pytest.raises(ValidationFailure):
            ContractFactory(db_session, now=clock).create_contract(
                template_id=ica_template.id,
                created_by_id=CREATOR,
                title="ICA",
                consultant_id=CONSULTANT,
                signer_assignments=assignments
            )
        assert db_session.query(Contract).count() == 0

    def test_expiration_before_effective_is_refused(self, db_session, clock, ica_template):
        with pytest.raises(ValidationFailure):
            ContractFactory(db_session, now=clock).create_contract(
                template_id=ica_template.id,
                created_by_id=CREATOR,
                title="ICA",
                consultant_id=CONSULTANT,
                effective_date=date(2026, 6, 1),
                expiration_date=date(2026, 5, 1),
                signer_assignments={"admin": ADMIN}
            )

    def test_blank_title_is_refused(self, db_session, clock, ica_template):
        with pytest.raises(ValidationFailure):
            ContractFactory(db_session, now=clock).create_contract(
                template_id=ica_template.id,
                created_by_id=CREATOR,
                title="  ",
                consultant_id=CONSULTANT,
                signer_assignments={"admin": ADMIN}
            )

    def test_duplicate_contract_number_is_a_conflict(self, db_session, clock, ica_template, draft_contract, monkeypatch):
        # Another process allocated the same number and committed first
        monkeypatch.setattr(
            "esign.services.contract_factory.next_contract_number",
            lambda db, prefix, year: draft_contract.contract_number
        )

        with pytest.raises(ConcurrencyConflict):
            _create(db_session, clock, ica_template)

        assert db_session.query(Contract).count() == 1
