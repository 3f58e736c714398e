"""
Job Matrix Expander

Turns a job template and its named axes into concrete job instances.
"""

import itertools
import logging
from typing import Any, Dict, List

from .exceptions import ConfigurationError
from .main import MATRIX_PLACEHOLDER, JobInstance, JobTemplate

logger = logging.getLogger(__name__)


def validate_template(template: JobTemplate) -> None:
    """
    Check a template's matrix before anything is scheduled.

    Raises ConfigurationError for empty or duplicate axes, and for
    tolerance rules or command placeholders that name an unknown axis.
    """
    seen = set()
    for axis_name, values in template.axes:
        if axis_name in seen:
            raise ConfigurationError(
                f"Job '{template.name}': duplicate matrix axis '{axis_name}'"
            )
        seen.add(axis_name)
        if not values:
            raise ConfigurationError(
                f"Job '{template.name}': matrix axis '{axis_name}' has no values"
            )

    for axis_name in template.tolerant_when:
        if axis_name not in seen:
            raise ConfigurationError(
                f"Job '{template.name}': tolerant_when refers to unknown axis '{axis_name}'"
            )

    for match in MATRIX_PLACEHOLDER.finditer(template.command):
        if match.group(1) not in seen:
            raise ConfigurationError(
                f"Job '{template.name}': command refers to unknown axis '{match.group(1)}'"
            )


def is_tolerant(template: JobTemplate, assignment: Dict[str, Any]) -> bool:
    """Resolve the tolerance flag for one axis assignment"""
    if template.tolerant:
        return True
    if not template.tolerant_when:
        return False
    return all(
        assignment.get(axis) in values
        for axis, values in template.tolerant_when.items()
    )


def expand(template: JobTemplate) -> List[JobInstance]:
    """
    Expand a template into one instance per combination of axis values.

    The product is enumerated with the first axis varying slowest, so the
    order is stable across runs. A template without axes yields exactly
    one instance.
    """
    validate_template(template)

    names = template.axis_names
    value_lists = [values for _, values in template.axes]

    instances = []
    for index, combination in enumerate(itertools.product(*value_lists)):
        assignment = dict(zip(names, combination))
        instances.append(
            JobInstance(
                template=template,
                axis_assignment=assignment,
                index=index,
                tolerant=is_tolerant(template, assignment),
            )
        )

    logger.debug(f"Expanded {template.name} into {len(instances)} instance(s)")
    return instances


def expand_all(templates: List[JobTemplate]) -> List[JobInstance]:
    """Expand several templates, validating every one before returning"""
    instances: List[JobInstance] = []
    for template in templates:
        instances.extend(expand(template))
    return instances
