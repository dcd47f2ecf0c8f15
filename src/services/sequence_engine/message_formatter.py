"""
Message formatting for steps that are not AI-personalized.

This module contains functionality for:
- Placeholder replacement ({{first_name}}, {{company_name}}, ...)
- Template validation
- Building subject/body content for dispatch and previews
"""

import logging
import re
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*([a-z_]+)\s*\}\}')


def _render_template(self, template: str, contact, sequence=None) -> str:
    """Replace known placeholders with contact data; unknown ones are left untouched."""
    if not template:
        return ""

    first_name = getattr(contact, 'first_name', None)
    last_name = getattr(contact, 'last_name', None)
    company_name = getattr(contact, 'company_name', None)

    values = {
        'first_name': first_name or 'there',
        'last_name': last_name or '',
        'full_name': f"{first_name or ''} {last_name or ''}".strip() or 'there',
        'company': company_name or 'your company',
        'company_name': company_name or 'your company',
        'title': getattr(contact, 'title', None) or 'your role',
        'industry': getattr(contact, 'industry', None) or 'your industry',
        'sequence_name': getattr(sequence, 'name', None) or ''
    }

    def _replace(match):
        key = match.group(1)
        if key in values:
            return str(values[key])
        logger.warning(f"Unknown placeholder '{{{{{key}}}}}' left in message")
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def _build_template_content(self, step, contact, sequence=None) -> Dict[str, Any]:
    """Subject/body for a step rendered from its templates."""
    return {
        'subject': self._render_template(step.subject_template, contact, sequence) or None,
        'body': self._render_template(step.body_template, contact, sequence),
        'source': 'template'
    }


def _validate_template(self, template: str) -> List[str]:
    """Problems with a template's placeholder syntax."""
    errors = []
    if not template:
        return errors

    if template.count('{{') != template.count('}}'):
        errors.append("Unbalanced placeholder brackets")

    known = self._get_available_placeholders()
    for key in PLACEHOLDER_PATTERN.findall(template):
        if f"{{{{{key}}}}}" not in known:
            errors.append(f"Unknown placeholder '{{{{{key}}}}}'")

    return errors


def _get_available_placeholders(self) -> Dict[str, str]:
    """Get a list of available placeholders and their descriptions."""
    return {
        '{{first_name}}': 'Contact\'s first name',
        '{{last_name}}': 'Contact\'s last name',
        '{{full_name}}': 'Contact\'s full name',
        '{{company}}': 'Contact\'s company name',
        '{{company_name}}': 'Contact\'s company name (alternative)',
        '{{title}}': 'Contact\'s title/role',
        '{{industry}}': 'Contact\'s industry',
        '{{sequence_name}}': 'Sequence name'
    }
