"""Template store - reusable contract text and the roles that must sign it."""
import logging
import re
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from esign.models.domain import ContractTemplate
from esign.models.enums import TemplateType
from esign.services.errors import InvalidStateError, NotFoundError, ValidationFailure

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def find_placeholders(content: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    seen: List[str] = []
    for name in PLACEHOLDER_PATTERN.findall(content):
        if name not in seen:
            seen.append(name)
    return seen


def resolve_placeholders(content: str, values: Dict[str, str]) -> str:
    """Substitute every placeholder that has a value; leave the rest as written."""
    def _sub(match):
        name = match.group(1)
        if name in values and values[name] is not None:
            return str(values[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_sub, content)


def _validate_roles(roles: List[str]) -> List[str]:
    cleaned = [r.strip() for r in roles or []]
    if not cleaned or any(not r for r in cleaned):
        raise ValidationFailure("A template needs at least one named signer role")
    if len(set(cleaned)) != len(cleaned):
        raise ValidationFailure("Signer roles on a template must be unique")
    return cleaned


class TemplateStore:
    """CRUD over contract templates, with version bumps on content change."""

    def __init__(self, db: Session):
        self.db = db

    def create_template(
        self,
        name: str,
        content: str,
        required_signer_roles: List[str],
        template_type: TemplateType = TemplateType.GENERAL,
        placeholders: Optional[List[str]] = None
    ) -> ContractTemplate:
        if not name or not name.strip():
            raise ValidationFailure("Template name is required")
        if not content or not content.strip():
            raise ValidationFailure("Template content is required")

        template = ContractTemplate(
            name=name.strip(),
            type=template_type,
            content=content,
            placeholders=self._merge_placeholders(content, placeholders),
            required_signer_roles=_validate_roles(required_signer_roles),
            is_active=True,
            version=1
        )
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)
        logger.info("Template %s (%s) created", template.id, template.name)
        return template

    def get_template(self, template_id: int) -> ContractTemplate:
        template = self.db.query(ContractTemplate).filter(ContractTemplate.id == template_id).first()
        if not template:
            raise NotFoundError(f"Template {template_id} not found", template_id=template_id)
        return template

    def list_templates(self, active_only: bool = False) -> List[ContractTemplate]:
        query = self.db.query(ContractTemplate)
        if active_only:
            query = query.filter(ContractTemplate.is_active.is_(True))
        return query.order_by(ContractTemplate.name.asc(), ContractTemplate.id.asc()).all()

    def update_template(
        self,
        template_id: int,
        name: Optional[str] = None,
        content: Optional[str] = None,
        required_signer_roles: Optional[List[str]] = None,
        placeholders: Optional[List[str]] = None
    ) -> ContractTemplate:
        """
        Edit a template.

        A content or role change bumps the version. Contracts already created keep
        their own snapshot and are not affected.
        """
        template = self.get_template(template_id)
        changed = False

        if name is not None:
            if not name.strip():
                raise ValidationFailure("Template name is required")
            template.name = name.strip()

        if content is not None and content != template.content:
            if not content.strip():
                raise ValidationFailure("Template content is required")
            template.content = content
            changed = True

        if required_signer_roles is not None:
            roles = _validate_roles(required_signer_roles)
            if roles != list(template.required_signer_roles):
                template.required_signer_roles = roles
                changed = True

        if changed or placeholders is not None:
            template.placeholders = self._merge_placeholders(template.content, placeholders)

        if changed:
            template.version = template.version + 1

        self.db.commit()
        self.db.refresh(template)
        logger.info("Template %s updated to version %s", template.id, template.version)
        return template

    def deactivate_template(self, template_id: int) -> ContractTemplate:
        template = self.get_template(template_id)
        if not template.is_active:
            raise InvalidStateError(f"Template {template_id} is already inactive")
        template.is_active = False
        self.db.commit()
        self.db.refresh(template)
        return template

    @staticmethod
    def _merge_placeholders(content: str, declared: Optional[List[str]]) -> List[str]:
        found = find_placeholders(content)
        for name in declared or []:
            if not PLACEHOLDER_PATTERN.fullmatch("{{%s}}" % name):
                raise ValidationFailure(f"Invalid placeholder name: {name!r}")
            if name not in found:
                found.append(name)
        return found
