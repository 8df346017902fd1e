"""Contract factory - turns a template plus parameters into a draft contract."""
import logging
from datetime import date
from typing import Dict, Optional
from esign.config import settings
from esign.models.domain import Contract, ContractSigner
from esign.models.enums import AuditEventType, ContractStatus, SignerStatus, SigningPolicy
from esign.services.base import ContractService
from esign.services.errors import InvalidStateError, ValidationFailure
from esign.services.numbering import next_contract_number, numbering_lock
from esign.services.templates import TemplateStore, find_placeholders, resolve_placeholders

logger = logging.getLogger(__name__)

CONSULTANT_ROLE = "consultant"


class ContractFactory(ContractService):
    """
    Creates contracts in draft.

    The template text is resolved once, here, and frozen into the contract.
    Signers are materialized from the template's role list, in that order.
    """

    def create_contract(
        self,
        template_id: int,
        created_by_id: str,
        title: str,
        consultant_id: Optional[str] = None,
        project_id: Optional[str] = None,
        effective_date: Optional[date] = None,
        expiration_date: Optional[date] = None,
        parameters: Optional[Dict[str, str]] = None,
        signer_assignments: Optional[Dict[str, str]] = None,
        signing_policy: Optional[SigningPolicy] = None
    ) -> Contract:
        with self.storage_guard():
            template = TemplateStore(self.db).get_template(template_id)
        if not template.is_active:
            raise InvalidStateError(f"Template {template.name} is inactive and cannot be used")

        if not title or not title.strip():
            raise ValidationFailure("Contract title is required")
        if not created_by_id:
            raise ValidationFailure("Contract creator is required")
        if effective_date and expiration_date and expiration_date < effective_date:
            raise ValidationFailure("Expiration date cannot be before the effective date")

        roles = list(template.required_signer_roles)
        assignments = self._assign_signers(roles, consultant_id, signer_assignments or {})

        with numbering_lock(), self.storage_guard():
            now = self.now()
            contract_number = next_contract_number(self.db, settings.contract_prefix, now.year)

            values = dict(parameters or {})
            values.update({
                "contract_number": contract_number,
                "title": title.strip(),
            })
            values.setdefault("consultant_id", consultant_id)
            values.setdefault("project_id", project_id)
            values.setdefault("effective_date", effective_date.isoformat() if effective_date else None)
            values.setdefault("expiration_date", expiration_date.isoformat() if expiration_date else None)

            content = resolve_placeholders(template.content, values)

            contract = Contract(
                contract_number=contract_number,
                template_id=template.id,
                template_version=template.version,
                title=title.strip(),
                content=content,
                unresolved_placeholders=find_placeholders(content),
                consultant_id=consultant_id,
                project_id=project_id,
                created_by_id=created_by_id,
                status=ContractStatus.DRAFT,
                signing_policy=signing_policy or settings.signing_policy,
                effective_date=effective_date,
                expiration_date=expiration_date,
                created_at=now,
                updated_at=now
            )
            self.db.add(contract)
            self.db.flush()

            for order, role in enumerate(roles, start=1):
                self.db.add(ContractSigner(
                    contract_id=contract.id,
                    user_id=assignments[role],
                    role=role,
                    signing_order=order,
                    status=SignerStatus.PENDING
                ))

            self.audit.record(
                contract.id,
                AuditEventType.CREATED,
                created_by_id,
                {
                    "contract_number": contract_number,
                    "template_id": template.id,
                    "template_version": template.version,
                    "signing_policy": contract.signing_policy.value,
                    "signers": [
                        {"role": role, "user_id": assignments[role], "signing_order": order}
                        for order, role in enumerate(roles, start=1)
                    ],
                    "unresolved_placeholders": contract.unresolved_placeholders,
                },
                now=now
            )
            self.commit()

        self.db.refresh(contract)
        logger.info("Contract %s created from template %s v%s", contract.contract_number, template.id, template.version)
        return contract

    @staticmethod
    def _assign_signers(roles, consultant_id, signer_assignments):
        unknown = set(signer_assignments) - set(roles)
        if unknown:
            raise ValidationFailure(
                f"Template has no signer role(s): {', '.join(sorted(unknown))}",
                roles=sorted(unknown)
            )

        assignments = {}
        for role in roles:
            user_id = signer_assignments.get(role)
            if not user_id and role == CONSULTANT_ROLE:
                user_id = consultant_id
            if not user_id:
                raise ValidationFailure(f"No user assigned to signer role '{role}'", role=role)
            assignments[role] = user_id

        if len(set(assignments.values())) != len(assignments):
            raise ValidationFailure("A user can hold only one signer role on a contract")
        return assignments
