"""Terraform actions."""

from actions.terraform import (
    ACTIONS,
    TerraformAction,
    TerraformInitAction,
    TerraformPlanAction,
    TerraformApplyAction,
    TerraformDestroyAction,
    TerraformDriftCheckAction,
    TerraformFormatAction,
    TerraformValidateAction,
)
from actions.tree import ValidateAllAction, FormatTreeAction, DocsAction, CleanAction

__all__ = [
    'ACTIONS',
    'TerraformAction',
    'TerraformInitAction',
    'TerraformPlanAction',
    'TerraformApplyAction',
    'TerraformDestroyAction',
    'TerraformDriftCheckAction',
    'TerraformFormatAction',
    'TerraformValidateAction',
    'ValidateAllAction',
    'FormatTreeAction',
    'DocsAction',
    'CleanAction',
]
